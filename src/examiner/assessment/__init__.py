from examiner.assessment.service import RepublicAssessmentService, build_assessment_service

__all__ = ["RepublicAssessmentService", "build_assessment_service"]
