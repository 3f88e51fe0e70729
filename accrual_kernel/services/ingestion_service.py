"""
accrual_kernel.services.ingestion_service -- Loading parsed PO and GRN files.

Responsibility:
    Writes already-parsed PO-line records (upsert on the business key) and
    GRN records (replace by document number) into the store, and keeps the
    upload log.  CSV parsing itself happens upstream.

Architecture position:
    Kernel > Services.  Owns its sessions (from the injected session
    factory): ingestion workers run on their own threads, each with its own
    session and transaction.

Invariants enforced:
    - One PO line per business key.  The key is ``unique_id`` when the file
      carries one, else ``"{po_number}-{po_line_item}"``.
    - A new line is Draft; its category is Period iff both contract dates
      are present.  Re-uploading a line refreshes its attributes and
      category but keeps its workflow status.
    - PO rows are written in fixed-size batches: rows inside a batch run
      concurrently, batches run one after another.
    - A GRN upload replaces every stored row of each document it carries,
      so re-uploading the same file leaves the same rows behind.

Failure modes:
    - The first failing PO row aborts the upload after its batch; the
      upload log row is marked Failed and the error is re-raised.  Rows
      committed by earlier batches stay (each upsert is idempotent, so the
      file can simply be uploaded again).
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Sequence
from uuid import UUID

from sqlalchemy import and_, delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from accrual_kernel.db.engine import dialect_insert, session_scope
from accrual_kernel.domain.accrual import (
    GrnRecord,
    PoCategory,
    PoLineRecord,
    PoLineStatus,
)
from accrual_kernel.domain.clock import Clock, SystemClock
from accrual_kernel.logging_config import LogContext, get_logger
from accrual_kernel.models.activity import ActivityAssignmentModel, BusinessResponseModel
from accrual_kernel.models.approval import ApprovalSubmissionModel
from accrual_kernel.models.period_calculation import PeriodCalculationModel
from accrual_kernel.models.po_line import (
    GrnTransactionModel,
    GrnUploadModel,
    PoLineModel,
    PoUploadModel,
)
from accrual_kernel.services.audit_service import AuditService

logger = get_logger("services.ingestion")

# Columns refreshed when a re-uploaded line already exists.
_REFRESHED_COLUMNS = (
    "po_number", "po_line_item", "vendor_name", "item_description", "net_amount",
    "gl_account", "cost_center", "profit_center", "plant", "wbs_element",
    "project_name", "requester", "start_date", "end_date", "category", "upload_id",
)


@dataclass(frozen=True)
class PoUploadSummary:
    upload_id: UUID
    total_rows: int
    period_rows: int
    activity_rows: int


@dataclass(frozen=True)
class GrnUploadSummary:
    """Counts of one GRN upload.

    ``matched_rows`` found a PO line; ``duplicate_rows`` were repeats of an
    earlier (line, date, document) row in the same file and were dropped.
    """

    upload_id: UUID
    total_rows: int
    matched_rows: int
    unmatched_rows: int
    duplicate_rows: int
    inserted_rows: int
    replaced_rows: int


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def po_line_values(record: PoLineRecord) -> dict[str, Any]:
    """Column values of a PO-line record, with its derived category."""
    start = _clean(record.start_date)
    end = _clean(record.end_date)
    category = PoCategory.PERIOD if start and end else PoCategory.ACTIVITY
    return {
        "unique_id": record.business_key.strip(),
        "po_number": record.po_number.strip(),
        "po_line_item": record.po_line_item.strip(),
        "vendor_name": _clean(record.vendor_name),
        "item_description": _clean(record.item_description),
        "net_amount": record.net_amount,
        "gl_account": _clean(record.gl_account),
        "cost_center": _clean(record.cost_center),
        "profit_center": _clean(record.profit_center),
        "plant": _clean(record.plant),
        "wbs_element": _clean(record.wbs_element),
        "project_name": _clean(record.project_name),
        "requester": _clean(record.requester),
        "start_date": start,
        "end_date": end,
        "category": category.value,
        "status": PoLineStatus.DRAFT.value,
    }


class IngestionService:
    """Loads parsed PO-line and GRN records."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock: Clock | None = None,
        batch_size: int = 100,
        max_workers: int = 8,
    ) -> None:
        if batch_size < 1 or max_workers < 1:
            raise ValueError("batch_size and max_workers must be >= 1")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._batch_size = batch_size
        self._max_workers = max_workers

    # ------------------------------------------------------------------
    # PO lines
    # ------------------------------------------------------------------

    def _upsert_row(self, values: dict[str, Any]) -> None:
        with session_scope(self._session_factory) as session:
            insert = dialect_insert(session)
            table = PoLineModel.__table__
            stmt = insert(table).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.unique_id],
                set_={
                    **{name: stmt.excluded[name] for name in _REFRESHED_COLUMNS},
                    "updated_at": func.now(),
                },
            )
            session.execute(stmt)

    def upsert_po_lines(
        self,
        records: Sequence[PoLineRecord],
        filename: str,
        uploaded_by: UUID | None = None,
        processing_month: str | None = None,
    ) -> PoUploadSummary:
        """Insert new PO lines and refresh existing ones by business key."""
        with session_scope(self._session_factory) as session:
            upload = PoUploadModel(
                filename=filename,
                uploaded_by=uploaded_by,
                processing_month=processing_month,
                total_rows=len(records),
                status="Processing",
                uploaded_at=self._clock.now(),
            )
            session.add(upload)
            session.flush()
            upload_id = upload.id

        rows = [{**po_line_values(r), "upload_id": upload_id} for r in records]
        period_rows = sum(1 for r in rows if r["category"] == PoCategory.PERIOD.value)

        with LogContext.bind(actor_id=str(uploaded_by) if uploaded_by else None):
            try:
                with ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="po-ingest",
                ) as executor:
                    for start in range(0, len(rows), self._batch_size):
                        batch = rows[start:start + self._batch_size]
                        futures = [executor.submit(self._upsert_row, row) for row in batch]
                        for future in futures:
                            future.result()
                        logger.debug(
                            "po_batch_written",
                            extra={"upload_id": str(upload_id), "offset": start, "rows": len(batch)},
                        )
            except Exception:
                self._finish_upload(upload_id, "Failed", uploaded_by, filename, len(rows), period_rows)
                logger.error("po_upload_failed", extra={"upload_id": str(upload_id)}, exc_info=True)
                raise

            self._finish_upload(upload_id, "Completed", uploaded_by, filename, len(rows), period_rows)

        logger.info(
            "po_upload_completed",
            extra={
                "upload_id": str(upload_id),
                "total_rows": len(rows),
                "period_rows": period_rows,
                "activity_rows": len(rows) - period_rows,
            },
        )
        return PoUploadSummary(upload_id, len(rows), period_rows, len(rows) - period_rows)

    def _finish_upload(
        self,
        upload_id: UUID,
        status: str,
        uploaded_by: UUID | None,
        filename: str,
        total_rows: int,
        period_rows: int,
    ) -> None:
        with session_scope(self._session_factory) as session:
            upload = session.get(PoUploadModel, upload_id)
            upload.status = status
            AuditService(session, self._clock).record(
                "po_file_uploaded", "po_upload", upload_id, uploaded_by,
                {"filename": filename, "status": status, "total_rows": total_rows,
                 "period_rows": period_rows, "activity_rows": total_rows - period_rows},
            )

    # ------------------------------------------------------------------
    # GRN
    # ------------------------------------------------------------------

    def replace_grn_transactions(
        self,
        records: Sequence[GrnRecord],
        filename: str,
        uploaded_by: UUID | None = None,
    ) -> GrnUploadSummary:
        """Replace stored GRN rows by the documents in ``records``.

        Rows are matched to PO lines by ``"{po_number}-{po_line_item}"``;
        unmatched rows are counted and dropped.
        """
        with session_scope(self._session_factory) as session:
            line_keys = {
                f"{po_number}-{item}": line_id
                for line_id, po_number, item in session.execute(
                    select(PoLineModel.id, PoLineModel.po_number, PoLineModel.po_line_item)
                )
            }

            seen: set[tuple[UUID, str | None, str | None]] = set()
            to_insert: list[GrnTransactionModel] = []
            matched = duplicates = 0
            docs: set[str] = set()
            undocumented: set[tuple[UUID, str | None]] = set()
            for record in records:
                line_id = line_keys.get(f"{record.po_number.strip()}-{record.po_line_item.strip()}")
                if line_id is None:
                    continue
                matched += 1
                grn_date = _clean(record.grn_date)
                grn_doc = _clean(record.grn_doc)
                key = (line_id, grn_date, grn_doc)
                if key in seen:
                    duplicates += 1
                    continue
                seen.add(key)
                if grn_doc is not None:
                    docs.add(grn_doc)
                else:
                    undocumented.add((line_id, grn_date))
                to_insert.append(GrnTransactionModel(
                    po_line_id=line_id,
                    grn_date=grn_date,
                    grn_doc=grn_doc,
                    grn_line=_clean(record.grn_line),
                    grn_value=record.grn_value,
                ))

            replaced = 0
            doc_list = sorted(docs)
            for start in range(0, len(doc_list), self._batch_size):
                chunk = doc_list[start:start + self._batch_size]
                replaced += session.execute(
                    delete(GrnTransactionModel).where(GrnTransactionModel.grn_doc.in_(chunk))
                ).rowcount
            for line_id, grn_date in undocumented:
                date_match = (
                    GrnTransactionModel.grn_date.is_(None) if grn_date is None
                    else GrnTransactionModel.grn_date == grn_date
                )
                replaced += session.execute(
                    delete(GrnTransactionModel).where(and_(
                        GrnTransactionModel.po_line_id == line_id,
                        GrnTransactionModel.grn_doc.is_(None),
                        date_match,
                    ))
                ).rowcount

            upload = GrnUploadModel(
                filename=filename,
                uploaded_by=uploaded_by,
                total_rows=len(records),
                matched_rows=matched,
                unmatched_rows=len(records) - matched,
                uploaded_at=self._clock.now(),
            )
            session.add(upload)
            session.flush()
            for row in to_insert:
                row.upload_id = upload.id
            session.add_all(to_insert)
            session.flush()

            summary = GrnUploadSummary(
                upload_id=upload.id,
                total_rows=len(records),
                matched_rows=matched,
                unmatched_rows=len(records) - matched,
                duplicate_rows=duplicates,
                inserted_rows=len(to_insert),
                replaced_rows=replaced,
            )
            AuditService(session, self._clock).record(
                "grn_file_uploaded", "grn_upload", upload.id, uploaded_by,
                {"filename": filename, "total_rows": summary.total_rows,
                 "matched_rows": matched, "inserted_rows": summary.inserted_rows,
                 "replaced_rows": replaced},
            )

        logger.info(
            "grn_upload_completed",
            extra={
                "upload_id": str(summary.upload_id),
                "total_rows": summary.total_rows,
                "matched_rows": summary.matched_rows,
                "unmatched_rows": summary.unmatched_rows,
                "duplicate_rows": summary.duplicate_rows,
                "replaced_rows": summary.replaced_rows,
            },
        )
        return summary

    # ------------------------------------------------------------------
    # Bulk clear
    # ------------------------------------------------------------------

    def clear_all_po_data(self, actor_id: UUID | None = None) -> dict[str, int]:
        """Delete every PO line and everything hanging off it.

        Returns the number of rows removed per table.
        """
        removed: dict[str, int] = {}
        with session_scope(self._session_factory) as session:
            for model in (
                BusinessResponseModel,
                ActivityAssignmentModel,
                ApprovalSubmissionModel,
                PeriodCalculationModel,
                GrnTransactionModel,
                PoLineModel,
                PoUploadModel,
                GrnUploadModel,
            ):
                removed[model.__tablename__] = session.execute(delete(model)).rowcount
            AuditService(session, self._clock).record(
                "po_data_cleared", "po_line", None, actor_id, removed,
            )

        logger.warning("po_data_cleared", extra={"removed": removed})
        return removed
