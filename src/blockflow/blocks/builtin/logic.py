"""Flow-control blocks built on the condition evaluator."""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ...errors import ItemError
from ...workflow.conditions import Condition, ConditionEvaluator
from ...workflow.context import ExecutionContext
from ..base import BaseBlock, BlockConfig


class FilterConfig(BlockConfig):
    conditions: List[Condition] = Field(default_factory=list)
    on_fail: Literal["skip", "error"] = Field(default="skip", alias="onFail")


class FilterBlock(BaseBlock):
    """Keeps items that satisfy every condition.

    List input is filtered item by item. A single object passes through
    whole or becomes ``None``. With ``on_fail: error`` the first
    non-matching item fails the node instead of being dropped.
    """
    type = "filter"
    supports_mock = True
    config_model = FilterConfig

    async def execute_live(self, config: FilterConfig, input: Any, context: ExecutionContext) -> Any:
        evaluator = ConditionEvaluator()

        if isinstance(input, list):
            kept = []
            for index, item in enumerate(input):
                if evaluator.evaluate_all(config.conditions, item):
                    kept.append(item)
                elif config.on_fail == "error":
                    raise ItemError(index, f"Item at index {index} failed filter conditions", item)

            self.log(
                context, "info", "Filter completed",
                input_count=len(input), output_count=len(kept),
            )
            return self.completed(
                kept,
                input_count=len(input),
                output_count=len(kept),
                filtered_out=len(input) - len(kept),
            )

        passes = evaluator.evaluate_all(config.conditions, input)
        if not passes and config.on_fail == "error":
            raise ValueError("Input failed filter conditions")
        self.log(context, "info", "Filter completed", passes=passes)
        return self.completed(input if passes else None, passes=passes)


class BranchTargets(BaseModel):
    true: Optional[str] = None  # Node id taken when the condition holds
    false: Optional[str] = None


class BranchConfig(BlockConfig):
    condition: Condition
    branches: BranchTargets = Field(default_factory=BranchTargets)


class BranchBlock(BaseBlock):
    """Evaluates a condition and annotates the input with the chosen route.

    Output is the input plus ``_branch`` ("true"/"false") and
    ``_routed_to`` (the configured target for that outcome). Downstream
    nodes can select on these with a filter.
    """
    type = "branch"
    supports_mock = True
    config_model = BranchConfig

    async def execute_live(self, config: BranchConfig, input: Any, context: ExecutionContext) -> Any:
        outcome = ConditionEvaluator().evaluate(config.condition, input)
        routed_to = config.branches.true if outcome else config.branches.false

        output: Dict[str, Any] = dict(input) if isinstance(input, dict) else {"data": input}
        output["_branch"] = "true" if outcome else "false"
        output["_routed_to"] = routed_to

        self.log(context, "info", "Branch condition evaluated", result=outcome, routed_to=routed_to)
        return self.completed(output, branch_result=outcome, routed_to=routed_to)
