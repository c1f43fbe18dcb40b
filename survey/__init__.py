"""Lead-capture survey: form validation, the record store and track delivery."""
from .delivery import Delivery, TrackWatcher, download_url, slugify
from .store import InMemorySurveyStore, RedisSurveyStore, SurveyForm, SurveyRecord, SurveyStore, build_survey_store
from .validators import validate_form

__all__ = [
    "Delivery",
    "InMemorySurveyStore",
    "RedisSurveyStore",
    "SurveyForm",
    "SurveyRecord",
    "SurveyStore",
    "TrackWatcher",
    "build_survey_store",
    "download_url",
    "slugify",
    "validate_form",
]
