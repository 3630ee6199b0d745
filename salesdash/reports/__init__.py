"""
Report Builders

Stateless async functions that turn stored rows and upstream snapshots into
dashboard JSON payloads.
"""
from .cells import build_cells
from .context import ReportContext
from .finance import (
    build_aov,
    build_channel_split,
    build_discount_impact,
    build_gross_net_returns,
    build_heatmap_today,
    build_new_vs_returning,
    build_sessions_mtd,
)
from .hourly import (
    build_clean,
    build_daily_trend,
    build_hourly_trend,
    build_latest,
    build_quality_report,
    build_sources_report,
)
from .kpis import build_summary, build_ytd
from .pace import build_daily_pace, build_projection, build_sales_goal, compute_sales_goal
from .products import build_product_momentum, build_refund_watchlist, build_top_products

__all__ = [
    "ReportContext",
    "build_cells",
    "build_aov",
    "build_channel_split",
    "build_discount_impact",
    "build_gross_net_returns",
    "build_heatmap_today",
    "build_new_vs_returning",
    "build_sessions_mtd",
    "build_clean",
    "build_daily_trend",
    "build_hourly_trend",
    "build_latest",
    "build_quality_report",
    "build_sources_report",
    "build_summary",
    "build_ytd",
    "build_daily_pace",
    "build_projection",
    "build_sales_goal",
    "compute_sales_goal",
    "build_product_momentum",
    "build_refund_watchlist",
    "build_top_products",
]
