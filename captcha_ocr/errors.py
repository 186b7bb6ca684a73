"""Exception types raised inside the solving pipeline."""


class CaptchaError(Exception):
    """Base class for captcha_ocr errors."""


class InputError(CaptchaError):
    """The request payload is missing, not base64 or not a decodable image."""


class PreprocessingFailure(CaptchaError):
    """An image transform step failed."""


class RecognitionFailure(CaptchaError):
    """The recognition engine failed or was used after release."""
