"""Translation of QIDO-RS query parameters into archive C-FIND requests."""

from collections.abc import Iterable, Mapping
from typing import Any

from dicomgate.services.dicom.client import DicomClient
from dicomgate.services.dicom.models import (
    PATIENT_NAME_TAG,
    QUERY_RETRIEVE_LEVEL_TAG,
    ArchiveQuery,
    ArchiveStatus,
    DicomNode,
    QueryFilter,
    QueryRetrieveLevel,
)
from dicomgate.services.gateway.tags import resolve_tag
from dicomgate.utils.dicom import parse_non_negative_int
from dicomgate.utils.logger import logger

# Attributes viewers expect on every match, requested whether or not the caller asked
STUDY_DEFAULT_TAGS = [
    "00080005",
    "00080020",
    "00080030",
    "00080050",
    "00080054",
    "00080056",
    "00080061",
    "00080090",
    "00081190",
    "00100010",
    "00100020",
    "00100030",
    "00100040",
    "0020000D",
    "00200010",
    "00201206",
    "00201208",
]

SERIES_DEFAULT_TAGS = [
    "00080005",
    "00080054",
    "00080056",
    "00080060",
    "0008103E",
    "00081190",
    "0020000E",
    "00200011",
    "00201209",
]

IMAGE_DEFAULT_TAGS = ["00080016", "00080018"]

INCLUDE_FIELD_PARAM = "includefield"
OFFSET_PARAM = "offset"
LIMIT_PARAM = "limit"


class QueryTranslator:
    """Builds archive queries from REST parameters and runs them.

    Pagination is applied to the full archive response, never pushed down to the
    archive. A patient name shorter than ``min_chars`` aborts the query, guarding
    the archive against archive-wide name scans.
    """

    def __init__(
        self,
        client: DicomClient,
        source: DicomNode,
        target: DicomNode,
        min_chars: int = 0,
        append_wildcard: bool = True,
    ):
        """Initialize the translator.

        Args:
            client: DICOM client used for C-FIND
            source: Our own node
            target: Archive node
            min_chars: Minimum accepted length of a patient name filter
            append_wildcard: Append ``*`` to patient name filters
        """
        self._client = client
        self._source = source
        self._target = target
        self.min_chars = min_chars
        self.append_wildcard = append_wildcard

    def translate(
        self,
        level: QueryRetrieveLevel,
        params: Mapping[str, str],
        defaults: Iterable[str] = (),
    ) -> ArchiveQuery | None:
        """Build the archive query for ``params``.

        Args:
            level: Query/retrieve level
            params: REST query parameters
            defaults: Fields always returned, keywords or tags

        Returns:
            The archive query, or None if the patient name guard rejected it
        """
        filters = [QueryFilter(tag=QUERY_RETRIEVE_LEVEL_TAG, value=level.value)]

        includes = params.get(INCLUDE_FIELD_PARAM)
        fields = includes.split(",") if includes else []
        fields.extend(defaults)

        for name in fields:
            name = name.strip()
            if name:
                filters.append(QueryFilter(tag=resolve_tag(name) or name))

        for name, value in params.items():
            tag = resolve_tag(name)
            if tag is None:
                continue

            if tag == PATIENT_NAME_TAG:
                if len(value) < self.min_chars:
                    logger.info(
                        f"Rejecting patient name filter {value!r}: "
                        f"shorter than {self.min_chars} characters"
                    )
                    return None
                if self.append_wildcard and not value.endswith("*"):
                    value += "*"

            filters.append(QueryFilter(tag=tag, value=value))

        return ArchiveQuery(level=level, filters=filters, source=self._source, target=self._target)

    async def find(
        self,
        level: QueryRetrieveLevel,
        params: Mapping[str, str],
        defaults: Iterable[str] = (),
    ) -> list[dict[str, Any]]:
        """Query the archive and return the requested page of DICOM JSON records.

        Rejected queries, archive failures and malformed responses all yield an
        empty list; nothing is raised to the caller.

        Args:
            level: Query/retrieve level
            params: REST query parameters, including ``offset`` and ``limit``
            defaults: Fields always returned

        Returns:
            Matching records from ``offset`` on, in archive order
        """
        query = self.translate(level, params, defaults)
        if query is None:
            return []

        offset = parse_non_negative_int(params.get(OFFSET_PARAM), OFFSET_PARAM) or 0
        limit = parse_non_negative_int(params.get(LIMIT_PARAM), LIMIT_PARAM)

        try:
            response = await self._client.find(query)
        except Exception as e:
            logger.error(f"C-FIND {level.value} failed: {e}")
            return []

        if response.code != ArchiveStatus.SUCCESS:
            logger.warning(f"C-FIND {level.value} returned status {response.code.name}")
            return []
        if not isinstance(response.container, list):
            logger.error(f"C-FIND {level.value} returned a malformed container")
            return []

        records = response.container[offset:]
        if limit:
            records = records[:limit]
        return records
