"""Aggregation pipelines behind the analysis statistics endpoints."""

from __future__ import annotations

import copy
from datetime import datetime, time, timedelta
from typing import Any, Mapping, Sequence

TIME_RANGE_QS = "time_range"
AGG_HOUR = 1000 * 60 * 60

VALID_TIME_RANGES = ("today", "yesterday", "last7days", "last30days")

Pipeline = list[dict[str, Any]]


class StatsError(ValueError):
    """Raised for an unknown metric or an invalid query parameter."""


def generate_simple_aggr(field: str, final_name: str, group_id: str) -> Pipeline:
    """Build a pipeline that counts the documents in each group of ``field``."""
    return [
        {"$project": {field: 1}},
        {"$unwind": f"${field}"},
        {"$group": {"_id": f"${group_id}", "count": {"$sum": 1}}},
        {"$project": {final_name: "$_id", "count": 1}},
    ]


STATS_QUERY_STRING_PARAMS: dict[str, list[str]] = {
    name: [TIME_RANGE_QS]
    for name in (
        "language",
        "container",
        "analysis",
        "repository",
        "author",
        "severity",
        "historyanalysis",
    )
}

STATS_QUERY_BASE: dict[str, Pipeline] = {
    "language": generate_simple_aggr("codes", "language", "codes.language"),
    "container": generate_simple_aggr("containers", "container", "containers.securityTest.name"),
    "analysis": [
        {"$project": {"finishedAt": 1, "result": 1}},
        {"$group": {"_id": "$result", "count": {"$sum": 1}}},
        {"$project": {"count": 1, "result": "$_id"}},
    ],
    "repository": [
        {"$match": {"repositoryURL": {"$exists": True}}},
        {"$match": {"repositoryBranch": {"$exists": True}}},
        {
            "$group": {
                "_id": {
                    "repositoryBranch": "$repositoryBranch",
                    "repositoryURL": "$repositoryURL",
                }
            }
        },
        {
            "$group": {
                "_id": {"repositoryURL": "$_id.repositoryURL"},
                "branches": {"$sum": 1},
            }
        },
        {
            "$group": {
                "_id": "repositories",
                "totalBranches": {"$sum": "$branches"},
                "totalRepositories": {"$sum": 1},
            }
        },
    ],
    "author": [
        {"$project": {"commitAuthors": 1}},
        {"$unwind": "$commitAuthors"},
        {"$group": {"_id": "$commitAuthors"}},
        {"$group": {"_id": "commitAuthors", "totalAuthors": {"$sum": 1}}},
    ],
    "severity": [
        {"$project": {"huskyresults": {"$objectToArray": "$huskyciresults"}}},
        {"$unwind": "$huskyresults"},
        {"$project": {"languageresults": {"$objectToArray": "$huskyresults.v"}}},
        {"$unwind": "$languageresults"},
        {"$project": {"results": {"$objectToArray": "$languageresults.v"}}},
        {"$unwind": "$results"},
        {"$group": {"_id": "$results.k", "count": {"$sum": {"$size": "$results.v"}}}},
        {"$project": {"severity": "$_id", "count": 1}},
    ],
    "historyanalysis": [
        {
            "$project": {
                "result": {
                    "$cond": {
                        "if": {"$eq": ["$result", "warning"]},
                        "then": "passed",
                        "else": "$result",
                    }
                },
                "finishedAt": 1,
            }
        },
        {"$addFields": {"dateNumber": {"$toLong": "$finishedAt"}}},
        {"$addFields": {"dateMod": {"$mod": ["$dateNumber", AGG_HOUR]}}},
        {"$addFields": {"aggDate": {"$toDate": {"$subtract": ["$dateNumber", "$dateMod"]}}}},
        {
            "$group": {
                "_id": {"date": "$aggDate", "result": "$result"},
                "count": {"$sum": 1},
            }
        },
        {
            "$group": {
                "_id": "$_id.date",
                "results": {"$push": {"result": "$_id.result", "count": "$count"}},
                "total": {"$sum": "$count"},
            }
        },
        {"$sort": {"_id": -1}},
        {"$project": {"date": "$_id", "_id": 0, "total": 1, "results": "$results"}},
    ],
}

_TIME_RANGE_DAYS = {
    "today": (0, 0),
    "yesterday": (-1, -1),
    "last7days": (-6, 0),
    "last30days": (-29, 0),
}


def _beginning_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)


def _end_of_day(moment: datetime) -> datetime:
    return datetime.combine(moment.date(), time.max, tzinfo=moment.tzinfo)


def generate_time_filter_stage(
    range_init_days: int, range_end_days: int, now: datetime | None = None
) -> Pipeline:
    """Build a stage keeping analyses finished between two days relative to ``now``."""
    now = now or datetime.now()
    return [
        {
            "$match": {
                "finishedAt": {
                    "$gte": _beginning_of_day(now + timedelta(days=range_init_days)),
                    "$lte": _end_of_day(now + timedelta(days=range_end_days)),
                }
            }
        }
    ]


def get_time_filter_stage(time_range: str, now: datetime | None = None) -> Pipeline | None:
    """Return the time filter stage for a named range, or None if it is unknown."""
    days = _TIME_RANGE_DAYS.get(time_range)
    if days is None:
        return None
    return generate_time_filter_stage(*days, now)


def valid_time_range(time_range: str) -> bool:
    """Return whether ``time_range`` is a known range name."""
    return time_range in VALID_TIME_RANGES


def valid_metric(metric_type: str) -> bool:
    """Return whether ``metric_type`` is a known metric."""
    return metric_type in STATS_QUERY_BASE


def validate_params(params: Mapping[str, Sequence[str]]) -> None:
    """Raise :class:`StatsError` if any known parameter has an invalid value."""
    for param, values in params.items():
        if param == TIME_RANGE_QS and (not values or not valid_time_range(values[-1])):
            raise StatsError("invalid time_range query string param")


def valid_query_string_params(
    metric: str, params: Mapping[str, Sequence[str]]
) -> dict[str, Sequence[str]]:
    """Keep only the parameters that ``metric`` accepts."""
    allowed = STATS_QUERY_STRING_PARAMS.get(metric, [])
    return {key: value for key, value in params.items() if key in allowed}


def get_metric_query(
    metric_type: str,
    query_string_params: Mapping[str, Sequence[str]],
    now: datetime | None = None,
) -> Pipeline:
    """Return the aggregation pipeline for a metric and its query parameters."""
    if not valid_metric(metric_type):
        raise StatsError("invalid metric type")
    params = valid_query_string_params(metric_type, query_string_params)
    validate_params(params)
    query = copy.deepcopy(STATS_QUERY_BASE[metric_type])
    for param, values in params.items():
        if param == TIME_RANGE_QS:
            stage = get_time_filter_stage(values[-1], now)
            if stage is not None:
                query = stage + query
    return query