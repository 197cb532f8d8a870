"""Ralph watch dashboards: a Textual app and a plain ANSI fallback."""

from .dashboard import RalphDashboard
from .fallback import DashboardState, FallbackDashboard, load_dashboard_state, render_dashboard

__all__ = [
    "RalphDashboard",
    "DashboardState",
    "FallbackDashboard",
    "load_dashboard_state",
    "render_dashboard",
]
