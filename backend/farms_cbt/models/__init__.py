from farms_cbt.models.exam import CBTExam
from farms_cbt.models.question import CBTQuestion
from farms_cbt.models.attempt import CBTExamAttempt

__all__ = ["CBTExam", "CBTQuestion", "CBTExamAttempt"]
