"""Plotly figures for segmentation results"""

import numpy as np
import plotly.graph_objects as go

SEGMENT_COLORS = {
    "plane": "#4363d8",
    "cylinder": "#e6194b",
    "remaining": "#a9a9a9",
    "filtered": "#3cb44b",
}


def scatter_2d(points_list, names, colors, title, xlabel, ylabel, x_idx=0, y_idx=1):
    """Create a 2D scatter plot with multiple point sets."""
    fig = go.Figure()
    for pts, name, color in zip(points_list, names, colors):
        if len(pts) > 0:
            fig.add_trace(go.Scattergl(
                x=pts[:, x_idx], y=pts[:, y_idx],
                mode="markers",
                marker=dict(size=2, color=color, opacity=0.5),
                name=name,
            ))
    fig.update_layout(
        title=title,
        xaxis=dict(title=xlabel, scaleanchor="y"),
        yaxis=dict(title=ylabel),
        height=550,
        margin=dict(l=40, r=20, t=40, b=40),
    )
    return fig


def scatter_3d_segments(segments):
    """
    Create a 3D scatter plot with one trace per named point set.

    Args:
        segments: list of (name, Nx3 points, color)
    """
    fig = go.Figure()
    for name, pts, color in segments:
        if len(pts) == 0:
            continue
        fig.add_trace(go.Scatter3d(
            x=pts[:, 0], y=pts[:, 1], z=pts[:, 2],
            mode="markers",
            marker=dict(size=2, color=color, opacity=0.6),
            name=f"{name} ({len(pts):,})",
        ))
    fig.update_layout(
        scene=dict(aspectmode="data"),
        height=600,
        margin=dict(l=0, r=0, t=30, b=0),
    )
    return fig


def cylinder_axis_segment(coefficients, points: np.ndarray) -> np.ndarray:
    """End points of the cylinder axis clipped to the extent of its inliers."""
    c = np.asarray(coefficients, dtype=np.float64)
    point, direction = c[:3], c[3:6]
    if len(points) == 0:
        return np.vstack([point, point + direction])
    t = (points[:, :3] - point) @ direction
    return np.vstack([point + t.min() * direction, point + t.max() * direction])


def add_cylinder_axis(fig: go.Figure, coefficients, points: np.ndarray) -> go.Figure:
    ends = cylinder_axis_segment(coefficients, points)
    fig.add_trace(go.Scatter3d(
        x=ends[:, 0], y=ends[:, 1], z=ends[:, 2],
        mode="lines",
        line=dict(color="black", width=6),
        name=f"Axis (r = {coefficients[6]:.3f})",
    ))
    return fig


def plane_profile(coefficients, x_range, x_idx=0, y_idx=2):
    """
    Line where the plane meets the x_idx/y_idx view, solving for the y_idx coordinate.
    Returns None when the plane is parallel to that axis.
    """
    c = np.asarray(coefficients, dtype=np.float64)
    if abs(c[y_idx]) < 1e-6:
        return None
    x_line = np.linspace(x_range[0], x_range[1], 100)
    y_line = (-c[x_idx] * x_line - c[3]) / c[y_idx]
    return x_line, y_line
