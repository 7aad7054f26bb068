class CropDoctorError(Exception):
    """Base class for errors raised while uploading or analysing an image."""


class ConfigurationError(CropDoctorError):
    pass


class StorageError(CropDoctorError):
    pass


class UploadError(CropDoctorError):
    pass


class AnalysisError(CropDoctorError):
    pass
