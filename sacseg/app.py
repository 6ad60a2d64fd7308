"""Streamlit UI for the plane and cylinder segmentation"""

import sys
from pathlib import Path
from typing import Optional, Tuple

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import streamlit as st
import plotly.graph_objects as go

from sacseg.constants import SacMethod
from sacseg.data_loader import load_cloud
from sacseg.exceptions import SegmentationError
from sacseg.pipeline import (
    CylinderSegmentationParams,
    CylinderSegmentationResult,
    segment_cylinder,
    segment_cylinder_directory,
)
from sacseg.synthetic import make_tabletop_scene
from sacseg.visualizations import (
    SEGMENT_COLORS,
    add_cylinder_axis,
    plane_profile,
    scatter_2d,
    scatter_3d_segments,
)

METHODS = [m.name for m in SacMethod]


def get_params_from_sidebar() -> CylinderSegmentationParams:
    """Render parameter controls in sidebar and return CylinderSegmentationParams."""
    with st.popover("Pass-through", use_container_width=True):
        filter_min, filter_max = st.slider(
            "Z limits (points outside are dropped)",
            -1.0, 5.0, (0.0, 1.5), 0.05,
        )

    with st.popover("Normals", use_container_width=True):
        k_search = st.slider(
            "K neighbours (larger = smoother normals)",
            5, 100, 50,
        )

    with st.popover("Plane", use_container_width=True):
        plane_method = st.selectbox("Method", METHODS, key="plane_method")
        plane_iters = st.slider(
            "Iterations (more = better fit, slower)",
            10, 1000, 100, 10,
        )
        plane_thresh = st.slider(
            "Distance threshold (larger = thicker plane)",
            0.005, 0.2, 0.03, 0.005,
        )
        plane_weight = st.slider(
            "Normal distance weight",
            0.0, 1.0, 0.1, 0.05,
            key="plane_weight",
        )

    with st.popover("Cylinder", use_container_width=True):
        cylinder_method = st.selectbox("Method", METHODS, key="cylinder_method")
        cylinder_iters = st.slider(
            "Iterations (more = better fit, slower)",
            100, 20000, 10000, 100,
        )
        cylinder_thresh = st.slider(
            "Distance threshold (larger = thicker shell)",
            0.005, 0.2, 0.05, 0.005,
        )
        cylinder_weight = st.slider(
            "Normal distance weight",
            0.0, 1.0, 0.1, 0.05,
            key="cylinder_weight",
        )
        min_radius, max_radius = st.slider(
            "Radius limits",
            0.0, 1.0, (0.0, 0.1), 0.01,
        )

    return CylinderSegmentationParams(
        filter_min=filter_min,
        filter_max=filter_max,
        k_search=k_search,
        plane_weight=plane_weight,
        plane_method=SacMethod[plane_method],
        plane_iters=plane_iters,
        plane_thresh=plane_thresh,
        cylinder_weight=cylinder_weight,
        cylinder_method=SacMethod[cylinder_method],
        cylinder_iters=cylinder_iters,
        cylinder_thresh=cylinder_thresh,
        min_radius=min_radius,
        max_radius=max_radius,
    )


# =============================================================================
# Single Cloud Mode
# =============================================================================

def render_filter_tab(r: CylinderSegmentationResult):
    """Render pass-through tab content."""
    st.caption(
        f"Input: **{r.original_size:,}** pts | "
        f"Filtered: **{r.filtered_size:,}** pts | "
        f"Removed: **{r.original_size - r.filtered_size:,}** pts"
    )
    fig = scatter_2d(
        [r.filtered_points],
        ["Filtered"],
        [SEGMENT_COLORS["filtered"]],
        "After Pass-through - Side View",
        "X (m)", "Z (m)",
        x_idx=0, y_idx=2,
    )
    st.plotly_chart(fig, use_container_width=True)


def render_plane_tab(r: CylinderSegmentationResult):
    """Render plane segmentation tab content."""
    plane = r.plane_points
    rest = r.remaining_points

    fig = scatter_2d(
        [plane, rest],
        [f"Plane ({len(plane):,})", f"Remaining ({len(rest):,})"],
        [SEGMENT_COLORS["plane"], SEGMENT_COLORS["remaining"]],
        "Plane vs Remaining - Side View",
        "X (m)", "Z (m)",
        x_idx=0, y_idx=2,
    )
    if r.plane_coefficients and len(r.filtered_points) > 0:
        x = r.filtered_points[:, 0]
        profile = plane_profile(r.plane_coefficients, (x.min(), x.max()))
        if profile is not None:
            fig.add_trace(go.Scattergl(
                x=profile[0], y=profile[1],
                mode="lines",
                line=dict(color="green", width=3),
                name="Fitted Plane",
            ))
        st.caption("Coefficients: " + ", ".join(f"{v:.4f}" for v in r.plane_coefficients))

    st.plotly_chart(fig, use_container_width=True)


def render_cylinder_tab(r: CylinderSegmentationResult):
    """Render cylinder segmentation tab content."""
    if not r.found_cylinder:
        st.warning("No cylindrical component found.")
        return

    st.caption("Coefficients: " + ", ".join(f"{v:.4f}" for v in r.cylinder_coefficients))
    fig = scatter_3d_segments([("Cylinder", r.cylinder_points, SEGMENT_COLORS["cylinder"])])
    add_cylinder_axis(fig, r.cylinder_coefficients, r.cylinder_points)
    st.plotly_chart(fig, use_container_width=True)


def render_3d_tab(r: CylinderSegmentationResult):
    """Render full 3D view tab content."""
    fig = scatter_3d_segments([
        ("Plane", r.plane_points, SEGMENT_COLORS["plane"]),
        ("Cylinder", r.cylinder_points, SEGMENT_COLORS["cylinder"]),
        ("Remaining", r.remaining_points, SEGMENT_COLORS["remaining"]),
    ])
    if r.found_cylinder:
        add_cylinder_axis(fig, r.cylinder_coefficients, r.cylinder_points)
    st.plotly_chart(fig, use_container_width=True)


def run_single_cloud(
    input_file: Optional[str],
    seed: Optional[int],
    params: CylinderSegmentationParams,
) -> Tuple[Optional[CylinderSegmentationResult], Optional[str]]:
    """Load the file (or build the synthetic scene) and segment it. Returns (result, error message)."""
    try:
        if input_file is not None:
            cloud = load_cloud(Path(input_file))
        else:
            cloud = make_tabletop_scene(seed=int(seed))
        return segment_cylinder(cloud, params, source=input_file or "synthetic"), None
    except (FileNotFoundError, ValueError, SegmentationError) as e:
        return None, str(e)


def render_single_cloud_mode():
    """Render the single cloud analysis mode."""
    with st.sidebar:
        st.header("Input")
        source = st.radio("Point cloud", ["Synthetic tabletop", "File"], horizontal=True)
        input_file = st.text_input("File path (.txt, .xyz, .npy)", value="") if source == "File" else None
        seed = st.number_input("Scene seed", 0, 10000, 0) if source != "File" else None

        st.header("Parameters")
        params = get_params_from_sidebar()

        run_button = st.button("Run Segmentation", type="primary", use_container_width=True)

    # Run pipeline
    if run_button:
        with st.spinner("Running segmentation..."):
            result, error = run_single_cloud(input_file, seed, params)
        if error:
            st.error(error)
            return
        st.session_state["single_cloud_result"] = result

    # Display results
    if "single_cloud_result" not in st.session_state:
        st.info("Configure parameters in the sidebar and click **Run Segmentation** to begin.")
        return

    r = st.session_state["single_cloud_result"]

    col1, col2, col3 = st.columns(3)
    col1.metric("Filtered points", f"{r.filtered_size:,}")
    col2.metric("Plane points", f"{r.plane_size:,}")
    col3.metric("Cylinder points", f"{r.cylinder_size:,}")

    tab_filter, tab_plane, tab_cylinder, tab_3d = st.tabs(
        ["Pass-through", "Plane", "Cylinder", "Full 3D View"]
    )

    with tab_filter:
        render_filter_tab(r)
    with tab_plane:
        render_plane_tab(r)
    with tab_cylinder:
        render_cylinder_tab(r)
    with tab_3d:
        render_3d_tab(r)


# =============================================================================
# Directory Mode
# =============================================================================

def render_directory_mode():
    """Render the batch mode over a directory of clouds."""
    with st.sidebar:
        st.header("Directory")
        cloud_dir = st.text_input("Directory path", value="data")

        st.header("Parameters")
        params = get_params_from_sidebar()

        process_button = st.button("Run Directory", type="primary", use_container_width=True)

    if process_button:
        if not Path(cloud_dir).exists():
            st.error(f"Directory not found: {cloud_dir}")
            return

        progress_bar = st.progress(0, text="Processing clouds...")

        def progress_callback(current: int, total: int):
            if total > 0:
                progress_bar.progress(current / total, text=f"Processing cloud {min(current + 1, total)}/{total}...")

        try:
            results = segment_cylinder_directory(cloud_dir, params, progress_callback=progress_callback)
        except (ValueError, SegmentationError) as e:
            progress_bar.empty()
            st.error(str(e))
            return
        progress_bar.empty()

        if not results:
            st.error("No point cloud files found in directory.")
            return

        st.session_state["directory_results"] = results
        st.rerun()

    if "directory_results" not in st.session_state:
        st.info("Enter a directory path and click **Run Directory** to begin.")
        return

    results = st.session_state["directory_results"]
    idx = st.slider("Cloud", 0, len(results) - 1, 0) if len(results) > 1 else 0
    r = results[idx]

    st.caption(r.source)
    col1, col2, col3 = st.columns(3)
    col1.metric("Cloud", f"{idx + 1} / {len(results)}")
    col2.metric("Plane points", f"{r.plane_size:,}")
    col3.metric("Cylinder points", f"{r.cylinder_size:,}")

    render_3d_tab(r)


# =============================================================================
# Main
# =============================================================================

def main():
    st.set_page_config(page_title="SAC Segmentation", layout="wide")
    st.title("Plane & Cylinder Segmentation")

    col1, col2 = st.columns(2)

    current_mode = st.session_state.get("mode", "single")

    with col1:
        if st.button(
            "Single Cloud",
            use_container_width=True,
            type="primary" if current_mode == "single" else "secondary",
        ):
            st.session_state["mode"] = "single"
            st.rerun()

    with col2:
        if st.button(
            "Directory",
            use_container_width=True,
            type="primary" if current_mode == "directory" else "secondary",
        ):
            st.session_state["mode"] = "directory"
            st.rerun()

    st.divider()

    if current_mode == "directory":
        render_directory_mode()
    else:
        render_single_cloud_mode()


if __name__ == "__main__":
    main()
