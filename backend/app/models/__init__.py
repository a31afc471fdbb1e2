from .org import Faculty, Department, Position, Employee, Role, User
from .approval import ApproverKind, ApproverRef, RequestApprovalAction
from .request_type import RequestType, RequestField
from .submission import RequestSubmission, RequestAnswer, RequestFulfillment
from .training import Training, TrainingApplication
from .leave import LeaveType, LeaveBalance, Holiday
from .audit import AuditLog
