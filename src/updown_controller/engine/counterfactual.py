from typing import Dict, Optional

from updown_controller.config import Settings
from updown_controller.engine.costs import CostModel
from updown_controller.engine.verdict import SymbolInputs, evaluate
from updown_controller.models import Counterfactuals, PersistenceState


def _section(settings: Settings, name: str, **changes) -> Settings:
    return settings.model_copy(update={name: getattr(settings, name).model_copy(update=changes)})


class CounterfactualAnalyzer:
    """Re-runs a cycle's evaluation with exactly one constraint relaxed.

    Diagnostic only: never touches persistence state and never feeds back
    into the real decision.
    """

    def __init__(self, settings: Settings, costs: Optional[CostModel] = None):
        self.settings = settings
        self.costs = costs or CostModel(settings.fees)
        cf = settings.counterfactual
        self.variants: Dict[str, Settings] = {
            "relaxed_net_edge": _section(settings, "decision", min_net_edge=cf.min_net_edge),
            "persistence_one": _section(settings, "decision", persistence_n=1),
            "zero_vol_floor": _section(settings, "signal", vol_floor=0.0),
            "wide_spread": _section(settings, "gates", max_spread=cf.max_spread),
        }

    def analyze(self, inputs: SymbolInputs, prior: PersistenceState) -> Counterfactuals:
        flags = {}
        for name, variant in self.variants.items():
            flags[name] = evaluate(inputs, variant, prior, self.costs).decision.is_proposal
        return Counterfactuals(would_fire_count=sum(1 for v in flags.values() if v), **flags)
