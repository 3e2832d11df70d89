from leadimport.schemas.bulk_upload import (
    ApiResponse, ErrorDetail, FormField, ImportJobCreated, ImportResult,
    JobStats, JobStatusSnapshot, LegacyImportResult, UploadAnalysis,
)
