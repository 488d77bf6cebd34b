"""
Survey Review Hub - Survey Import Module

Components:
- ResponseSource: abstract interface for survey response sources
- InMemoryResponseSource / JsonFileResponseSource / CsvFileResponseSource
- SurveyImporter: creates one review record per new response
- ImportJob: batch import with dry-run support
"""

from .sources import (
    SurveyResponse,
    ResponseSource,
    InMemoryResponseSource,
    JsonFileResponseSource,
    CsvFileResponseSource,
    parse_csv_responses,
)
from .job import ImportJob, ImportMode, ImportResult, ImportStats, SurveyImporter

__all__ = [
    'SurveyResponse',
    'ResponseSource',
    'InMemoryResponseSource',
    'JsonFileResponseSource',
    'CsvFileResponseSource',
    'parse_csv_responses',
    'ImportJob',
    'ImportMode',
    'ImportResult',
    'ImportStats',
    'SurveyImporter',
]
