"""
Interactive 3D view of a two-view reconstruction with Plotly.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

import numpy as np
import plotly.graph_objs as go

from twoview_sfm.sfm.data_structures import CameraPose, PointCloud


def _cloud_trace(cloud: PointCloud, colors: Optional[np.ndarray]) -> go.Scatter3d:
    xyz = cloud.xyz
    if colors is None:
        # No image colours: shade by reprojection error instead.
        marker = dict(
            size=2,
            color=cloud.reprojection_errors,
            colorscale="Viridis",
            colorbar=dict(title="Reproj. error (px)"),
        )
    else:
        marker = dict(size=2, color=[f"rgb({r},{g},{b})" for r, g, b in colors])

    return go.Scatter3d(
        x=xyz[:, 0],
        y=xyz[:, 1],
        z=xyz[:, 2],
        mode="markers",
        marker=marker,
        name="3D Points",
        hovertext=[f"kp {p.keypoint_idx}, err {p.reprojection_error:.3f}px" for p in cloud],
    )


def _camera_traces(poses: Sequence[CameraPose], axis_length: float) -> List[go.Scatter3d]:
    traces = []
    for i, pose in enumerate(poses):
        center = pose.center
        # Third row of R is the optical axis in reference coordinates.
        tip = center + axis_length * pose.rotation[2]
        traces.append(
            go.Scatter3d(
                x=[center[0], tip[0]],
                y=[center[1], tip[1]],
                z=[center[2], tip[2]],
                mode="lines+markers",
                marker=dict(size=[6, 0], color="red", symbol="diamond"),
                line=dict(color="red", width=4),
                name=f"Camera {i}",
            )
        )
    return traces


def plot_two_view_reconstruction(
    cloud: PointCloud,
    poses: Sequence[CameraPose] = (),
    colors: Optional[np.ndarray] = None,
    title: str = "Two-View 3D Reconstruction",
) -> go.Figure:
    """
    Plot a point cloud with the cameras that observed it.

    The reference camera is always drawn at the origin, followed by
    ``poses``. Each camera is a centre marker plus a short segment along its
    viewing direction.

    Args:
        cloud: Triangulated points in reference camera coordinates.
        poses: Further camera poses to draw.
        colors: Optional (N, 3) uint8 point colours.
        title: Figure title.
    """
    cameras = [CameraPose.identity(), *poses]
    extent = np.ptp(cloud.xyz, axis=0).max() if len(cloud) else 1.0

    fig = go.Figure()
    if len(cloud):
        fig.add_trace(_cloud_trace(cloud, colors))
    for trace in _camera_traces(cameras, axis_length=0.1 * max(extent, 1e-6)):
        fig.add_trace(trace)

    fig.update_layout(
        title=title,
        scene=dict(xaxis_title="X", yaxis_title="Y", zaxis_title="Z", aspectmode="data"),
        width=800,
        height=600,
    )
    return fig


__all__ = ["plot_two_view_reconstruction"]
