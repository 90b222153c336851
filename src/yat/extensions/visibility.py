"""
Visibility and enablement evaluation for App tabs and actions.
"""

import inspect

from yat.extensions.diagnostics import DiagnosticsLog
from yat.extensions.models import (
    ActionState,
    AppDefinition,
    Predicate,
    TabState,
    Tunnel,
    TunnelView,
)


class VisibilityEvaluator:
    """Evaluates tab/action predicates against a tunnel snapshot.

    Predicates are synchronous and run in declaration order. A predicate
    that raises or returns an awaitable gets the safe outcome (hidden, or
    disabled) and a diagnostic entry.
    """

    def __init__(self, diagnostics: DiagnosticsLog | None = None):
        self.diagnostics = diagnostics or DiagnosticsLog()

    def compute_tab_state(self, app: AppDefinition, tunnel: Tunnel) -> list[TabState]:
        return [
            TabState(
                tab=tab,
                visible=self._evaluate(tab.visible, tunnel, True, False, app, f"tab:{tab.key}:visible"),
            )
            for tab in app.tabs
        ]

    def compute_action_state(self, app: AppDefinition, tunnel: Tunnel) -> list[ActionState]:
        states = []
        for action in app.actions:
            visible = self._evaluate(action.visible, tunnel, True, False, app, f"action:{action.key}:visible")
            disabled = self._evaluate(action.disabled, tunnel, False, True, app, f"action:{action.key}:disabled")
            states.append(ActionState(action=action, visible=visible, disabled=disabled))
        return states

    def evaluate(self, app: AppDefinition, tunnel: Tunnel, active_tab: str | None = None) -> TunnelView:
        """Compute the full view and pick the active tab.

        The requested tab stays active while visible; otherwise the first
        visible tab is chosen.
        """
        tabs = self.compute_tab_state(app, tunnel)
        visible = [state.tab.key for state in tabs if state.visible]
        if active_tab not in visible:
            active_tab = visible[0] if visible else None
        return TunnelView(
            tunnel_id=tunnel.id,
            app_id=app.id,
            tabs=tabs,
            actions=self.compute_action_state(app, tunnel),
            active_tab=active_tab,
        )

    def _evaluate(
        self,
        predicate: Predicate | None,
        tunnel: Tunnel,
        default: bool,
        on_error: bool,
        app: AppDefinition,
        source: str
    ) -> bool:
        if predicate is None:
            return default
        try:
            result = predicate(tunnel)
            if inspect.isawaitable(result):
                if inspect.iscoroutine(result):
                    result.close()
                raise TypeError("predicate must be synchronous, got an awaitable")
            return bool(result)
        except Exception as e:
            self.diagnostics.record(source, str(e) or e.__class__.__name__, app.id, tunnel.id)
            return on_error
