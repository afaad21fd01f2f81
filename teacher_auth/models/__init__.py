from teacher_auth.models.audit_log import AuditLog
from teacher_auth.models.teacher import Teacher
