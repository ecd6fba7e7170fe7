from .flow import FlowGraph
from .planner import (
    AssignmentFailure,
    AssignmentPlan,
    PlanFailure,
    PlannedAssignment,
    ReviewTarget,
    plan_assignments,
)
from .service import (
    AssignmentService,
    GroupResult,
    GroupStatus,
    PlanningReport,
    PlanningStatus,
)

__all__ = [
    "AssignmentFailure",
    "AssignmentPlan",
    "AssignmentService",
    "FlowGraph",
    "GroupResult",
    "GroupStatus",
    "PlanFailure",
    "PlannedAssignment",
    "PlanningReport",
    "PlanningStatus",
    "ReviewTarget",
    "plan_assignments",
]
