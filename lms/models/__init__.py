"""Beanie document models and Pydantic schemas."""
from lms.models.user import User, UserRole, UserCreate, UserUpdate, UserOut
from lms.models.role import Role, PermissionSet, ModulePermission, RoleCreateRequest, RoleUpdateRequest, RoleResponse
from lms.models.lms_class import LmsClass, TimeSchedule, BundlePricing, ClassCreate, ClassUpdate
from lms.models.session import ClassSession, SessionAttendance, SessionCreate, SessionUpdate
from lms.models.enrollment import Enrollment, EnrollmentPaymentStatus, BundleRole, SubscriptionType
from lms.models.payment import Payment, PaymentMethod, PaymentStatus
from lms.models.batch import Batch, BatchCreate, BatchUpdate
from lms.models.ticket import Ticket, TicketStatus, TicketPriority
from lms.models.chat import Chat, ClassChat, ChatAttachment
from lms.models.content import KnowledgeBase, Material, MaterialType, Announcement
from lms.models.contact import ContactMessage

DOCUMENT_MODELS = [
    User,
    Role,
    LmsClass,
    ClassSession,
    Enrollment,
    Payment,
    Batch,
    Ticket,
    Chat,
    ClassChat,
    KnowledgeBase,
    Material,
    Announcement,
    ContactMessage,
]

__all__ = [
    "DOCUMENT_MODELS",
    "User",
    "UserRole",
    "UserCreate",
    "UserUpdate",
    "UserOut",
    "Role",
    "PermissionSet",
    "ModulePermission",
    "RoleCreateRequest",
    "RoleUpdateRequest",
    "RoleResponse",
    "LmsClass",
    "TimeSchedule",
    "BundlePricing",
    "ClassCreate",
    "ClassUpdate",
    "ClassSession",
    "SessionAttendance",
    "SessionCreate",
    "SessionUpdate",
    "Enrollment",
    "EnrollmentPaymentStatus",
    "BundleRole",
    "SubscriptionType",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Batch",
    "BatchCreate",
    "BatchUpdate",
    "Ticket",
    "TicketStatus",
    "TicketPriority",
    "Chat",
    "ClassChat",
    "ChatAttachment",
    "KnowledgeBase",
    "Material",
    "MaterialType",
    "Announcement",
    "ContactMessage",
]
