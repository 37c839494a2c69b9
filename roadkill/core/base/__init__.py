from roadkill.core.base.roadkill_base import Roadkill, RoadkillABC, RoadkillMeta

__all__ = ["Roadkill", "RoadkillABC", "RoadkillMeta"]
