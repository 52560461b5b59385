"""Chart helpers built on matplotlib and seaborn.

Helpers return the Figure and leave saving or embedding to the report
renderer, which closes each figure once it has been written.
"""

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import seaborn as sns
from matplotlib.figure import Figure


def setup_style() -> None:
    plt.style.use("seaborn-v0_8-whitegrid")
    sns.set_palette("husl")


def scatter_with_trend(
    data: pd.DataFrame,
    x: str,
    y: str,
    title: str,
    xlabel: str | None = None,
    ylabel: str | None = None,
    hue: str | None = None,
    logx: bool = False,
) -> Figure:
    """Scatter plot with a least-squares trend line over all points."""
    fig, ax = plt.subplots(figsize=(10, 6))
    frame = data[[c for c in (x, y, hue) if c]].replace([np.inf, -np.inf], np.nan)
    frame = frame.dropna(subset=[x, y])

    sns.scatterplot(data=frame, x=x, y=y, hue=hue, alpha=0.6, s=25, ax=ax)

    if len(frame) > 2 and frame[x].nunique() > 1:
        xs = np.log10(frame[x]) if logx else frame[x]
        slope, intercept = np.polyfit(xs, frame[y], 1)
        x_line = np.linspace(xs.min(), xs.max(), 100)
        ax.plot(
            10**x_line if logx else x_line,
            slope * x_line + intercept,
            "r-",
            linewidth=2,
            label="Trend",
        )

    if logx:
        ax.set_xscale("log")
    ax.set_xlabel(xlabel or x, fontsize=12)
    ax.set_ylabel(ylabel or y, fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.grid(True, alpha=0.3)
    fig.tight_layout()
    return fig


def bar_chart(
    data: pd.DataFrame,
    x: str,
    y: str,
    title: str,
    xlabel: str | None = None,
    ylabel: str | None = None,
    horizontal: bool = False,
) -> Figure:
    fig, ax = plt.subplots(figsize=(10, 6))
    if horizontal:
        sns.barplot(data=data, x=y, y=x, ax=ax, orient="h")
        ax.set_xlabel(ylabel or y, fontsize=12)
        ax.set_ylabel(xlabel or x, fontsize=12)
    else:
        sns.barplot(data=data, x=x, y=y, ax=ax)
        ax.set_xlabel(xlabel or x, fontsize=12)
        ax.set_ylabel(ylabel or y, fontsize=12)
        ax.tick_params(axis="x", rotation=45)
    ax.set_title(title, fontsize=14, fontweight="bold")
    fig.tight_layout()
    return fig


def histogram(
    data: pd.DataFrame,
    column: str,
    title: str,
    bins: int | list[float] = 30,
    xlabel: str | None = None,
    vline: float | None = None,
) -> Figure:
    fig, ax = plt.subplots(figsize=(10, 6))
    values = data[column].replace([np.inf, -np.inf], np.nan).dropna()
    sns.histplot(values, bins=bins, ax=ax, color="grey", alpha=0.7)
    if vline is not None:
        ax.axvline(vline, color="red", linestyle="--", linewidth=1.5)
    ax.set_xlabel(xlabel or column, fontsize=12)
    ax.set_ylabel("Count", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    fig.tight_layout()
    return fig


def boxplot(
    data: pd.DataFrame,
    x: str,
    y: str,
    title: str,
    xlabel: str | None = None,
    ylabel: str | None = None,
    order: list[str] | None = None,
) -> Figure:
    fig, ax = plt.subplots(figsize=(10, 6))
    sns.boxplot(data=data, x=x, y=y, order=order, ax=ax)
    ax.set_xlabel(xlabel or x, fontsize=12)
    ax.set_ylabel(ylabel or y, fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    ax.tick_params(axis="x", rotation=30)
    fig.tight_layout()
    return fig


def choropleth(gdf, column: str, title: str, cmap: str = "viridis") -> Figure:
    """Map a GeoDataFrame column; categorical columns get a legend."""
    fig, ax = plt.subplots(figsize=(12, 8))
    categorical = not pd.api.types.is_numeric_dtype(gdf[column])
    gdf.plot(
        column=column,
        ax=ax,
        cmap=cmap,
        legend=True,
        categorical=categorical,
        linewidth=0.1,
        edgecolor="white",
        missing_kwds={"color": "lightgrey"},
    )
    ax.set_axis_off()
    ax.set_title(title, fontsize=14, fontweight="bold")
    fig.tight_layout()
    return fig


def point_map(
    data: pd.DataFrame,
    title: str,
    hue: str | None = None,
    size: str | None = None,
    longitude: str = "longitude",
    latitude: str = "latitude",
) -> Figure:
    """Centroid scatter in longitude/latitude with an equal aspect ratio."""
    fig, ax = plt.subplots(figsize=(10, 8))
    sns.scatterplot(
        data=data,
        x=longitude,
        y=latitude,
        hue=hue,
        size=size,
        alpha=0.7,
        s=20 if size is None else None,
        ax=ax,
    )
    ax.set_aspect("equal", adjustable="datalim")
    ax.set_xlabel("Longitude", fontsize=12)
    ax.set_ylabel("Latitude", fontsize=12)
    ax.set_title(title, fontsize=14, fontweight="bold")
    fig.tight_layout()
    return fig
