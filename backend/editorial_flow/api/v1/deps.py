"""
路由层共享依赖：服务工厂。

中文注释:
- 每个请求构造一次服务对象（服务本身无状态，只持有 supabase client）。
- 测试通过 `app.dependency_overrides[get_xxx_service]` 注入带假 client 的服务。
"""

from editorial_flow.services.assignment_service import AssignmentService
from editorial_flow.services.decision_service import DecisionService
from editorial_flow.services.editorial_service import EditorialService
from editorial_flow.services.quality_service import QualityService
from editorial_flow.services.queue_service import EditorialQueueService
from editorial_flow.services.review_service import ReviewService
from editorial_flow.services.workload_service import WorkloadService


def get_editorial_service() -> EditorialService:
    return EditorialService()


def get_assignment_service() -> AssignmentService:
    return AssignmentService()


def get_workload_service() -> WorkloadService:
    return WorkloadService()


def get_review_service() -> ReviewService:
    return ReviewService()


def get_quality_service() -> QualityService:
    return QualityService()


def get_decision_service() -> DecisionService:
    return DecisionService()


def get_queue_service() -> EditorialQueueService:
    return EditorialQueueService()
