"""Batch mutation engine.

Applies an ordered list of create/update/delete operations as one atomic
unit. Operations run in input order inside one transaction, each in its own
savepoint: a failing operation is reported in its result and leaves no
writes behind, while its siblings carry on. Anything that leaves the
transaction itself unusable rolls back the whole batch.
"""
import logging
import time
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from notetree.config import config
from notetree.exceptions import (BatchFatalError, ConstraintError, ErrorCode,
                                 NoteTreeError, ReferenceResolutionError,
                                 ValidationError)
from notetree.models.schema import (BatchRequest, CreateNotePayload,
                                    DeleteNotePayload, Note, NoteView,
                                    OperationResult, OperationType,
                                    UpdateNotePayload, looks_like_uuid)
from notetree.observability import timed_operation
from notetree.services.property_resolver import PropertyResolver
from notetree.storage.entity_store import EntityStore

logger = logging.getLogger(__name__)

# SQLITE_BUSY and SQLITE_LOCKED
_BUSY_ERROR_CODES = (5, 6)


def _is_busy_error(error: SQLAlchemyError) -> bool:
    """True for SQLite busy/locked failures, which are worth retrying."""
    if not isinstance(error, OperationalError):
        return False
    orig = getattr(error, "orig", None)
    if getattr(orig, "sqlite_errorcode", None) in _BUSY_ERROR_CODES:
        return True
    message = str(orig if orig is not None else error).lower()
    return "database is locked" in message or "database is busy" in message


def _pydantic_to_validation_error(error: PydanticValidationError, op_type: str) -> ValidationError:
    first = error.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    message = first.get("msg", "Invalid payload").replace("Value error, ", "", 1)
    if first.get("type") == "missing" and field:
        return ValidationError(
            f"Missing {field} for {op_type} operation", field=field, code=ErrorCode.MISSING_FIELD
        )
    return ValidationError(
        f"Invalid {op_type} payload: {message}", field=field, value=first.get("input")
    )


class BatchMutationEngine:
    """Executes batches of note mutations against an EntityStore."""

    def __init__(
        self,
        store: EntityStore,
        resolver: Optional[PropertyResolver] = None,
        max_operations: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_base_ms: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """Initialize the engine.

        Args:
            store: Entity store the batch writes to.
            resolver: Resolver used for parent_properties. Built from the
                store if omitted.
            max_operations: Largest accepted batch. Defaults to config.
            max_retries: Retries on a busy/locked database. Defaults to config.
            retry_base_ms: First retry delay; doubled on every retry.
            sleep: Sleep function, replaceable in tests.
        """
        self.store = store
        self.resolver = resolver or PropertyResolver(store)
        self.max_operations = (
            max_operations if max_operations is not None else config.batch_max_operations
        )
        self.max_retries = max_retries if max_retries is not None else config.batch_max_retries
        self.retry_base_ms = (
            retry_base_ms if retry_base_ms is not None else config.batch_retry_base_ms
        )
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def execute_batch(
        self,
        operations: List[Any],
        include_parent_properties: bool = False,
        include_internal: bool = False,
    ) -> List[OperationResult]:
        """Apply operations in order and return one result per operation.

        Args:
            operations: List of {"type": ..., "payload": {...}} dicts.
            include_parent_properties: Attach resolved ancestor properties to
                each note that is still active after its operation.
            include_internal: Include hidden-by-default properties in note
                views and in parent_properties.

        Returns:
            Results in input order, same length as operations.

        Raises:
            ValidationError: If operations is not a list or is too large.
                Nothing has been written.
            BatchFatalError: If the transaction failed as a whole. Every
                write of the batch has been rolled back.
        """
        if not isinstance(operations, list):
            raise ValidationError(
                "operations must be a list", field="operations",
                code=ErrorCode.BATCH_INVALID_OPERATION,
            )
        if len(operations) > self.max_operations:
            raise ValidationError(
                f"Batch has {len(operations)} operations; the limit is {self.max_operations}",
                field="operations",
                value=len(operations),
                code=ErrorCode.BATCH_TOO_LARGE,
            )

        total = len(operations)
        with timed_operation("execute_batch", operation_count=total) as op:
            for attempt in range(self.max_retries + 1):
                progress: Dict[str, Optional[int]] = {"index": None}
                try:
                    results = self._run_attempt(
                        operations, include_parent_properties, include_internal, progress
                    )
                except SQLAlchemyError as e:
                    if _is_busy_error(e) and attempt < self.max_retries:
                        delay_ms = self.retry_base_ms * (2 ** attempt)
                        logger.warning(
                            f"Database busy during batch, retry {attempt + 1}/{self.max_retries} "
                            f"in {delay_ms}ms"
                        )
                        self._sleep(delay_ms / 1000)
                        continue

                    if _is_busy_error(e):
                        message = f"Database stayed busy after {self.max_retries} retries"
                        code = ErrorCode.BATCH_RETRIES_EXHAUSTED
                    else:
                        message = f"Batch transaction failed: {e.__class__.__name__}"
                        code = ErrorCode.BATCH_FATAL
                    logger.error(f"{message}; all {total} operations rolled back: {e}")
                    raise BatchFatalError(
                        message,
                        total_count=total,
                        failed_index=progress["index"],
                        code=code,
                        original_error=e,
                    ) from e

                op["result_count"] = len(results)
                op["attempts"] = attempt + 1
                op["failed_count"] = sum(1 for r in results if not r.ok)
                return results

        # The loop either returns or raises
        raise AssertionError("unreachable")

    def process_request(self, request_data: Any) -> Dict[str, Any]:
        """Caller-facing envelope around execute_batch.

        Returns {"results": [...]} on success. A request that fails as a
        whole returns {"error": {...}, "status_code": N} instead: 400 for
        request validation, 503 when the database stayed busy, 500 for any
        other fatal error.
        """
        if not isinstance(request_data, dict) or request_data.get("operations") is None:
            error = ValidationError(
                "Request validation failed: 'operations' key is missing or null.",
                field="operations",
                code=ErrorCode.MISSING_FIELD,
            )
            return {"error": error.to_dict(), "status_code": 400}

        try:
            request = BatchRequest.model_validate(request_data)
        except PydanticValidationError as e:
            error = _pydantic_to_validation_error(e, "batch")
            error.message = "Request validation failed: " + error.message
            return {"error": error.to_dict(), "status_code": 400}

        try:
            results = self.execute_batch(
                request.operations,
                include_parent_properties=request.include_parent_properties,
                include_internal=request.include_internal,
            )
        except ValidationError as e:
            return {"error": e.to_dict(), "status_code": 400}
        except BatchFatalError as e:
            status = 503 if e.code is ErrorCode.BATCH_RETRIES_EXHAUSTED else 500
            return {"error": e.to_dict(), "status_code": status}
        except Exception as e:
            # The transaction context has already rolled back
            logger.exception(f"Unexpected error while executing batch: {e}")
            error = BatchFatalError(
                f"Batch failed unexpectedly: {e.__class__.__name__}",
                total_count=len(request.operations),
                original_error=e,
            )
            return {"error": error.to_dict(), "status_code": 500}

        return {"results": [r.to_dict() for r in results]}

    # ------------------------------------------------------------------
    # One attempt
    # ------------------------------------------------------------------

    def _run_attempt(
        self,
        operations: List[Any],
        include_parent_properties: bool,
        include_internal: bool,
        progress: Dict[str, Optional[int]],
    ) -> List[OperationResult]:
        # Temp ids are local to one attempt; a retry starts from scratch
        temp_ids: Dict[str, str] = {}
        results: List[OperationResult] = []

        with self.store.transaction() as session:
            for index, raw in enumerate(operations):
                progress["index"] = index
                results.append(
                    self._apply(
                        session, index, raw, temp_ids,
                        include_parent_properties, include_internal,
                    )
                )
            progress["index"] = None

        return results

    def _apply(
        self,
        session: Session,
        index: int,
        raw: Any,
        temp_ids: Dict[str, str],
        include_parent_properties: bool,
        include_internal: bool,
    ) -> OperationResult:
        """Apply one operation in its own savepoint and capture its outcome."""
        op_type = raw.get("type") if isinstance(raw, dict) else None
        label = op_type if isinstance(op_type, str) and op_type else "unknown"
        payload = raw.get("payload") if isinstance(raw, dict) else None

        echo: Dict[str, Any] = {}
        if isinstance(payload, dict):
            if isinstance(payload.get("id"), str):
                echo["id"] = payload["id"]
            if label == OperationType.CREATE.value and isinstance(payload.get("client_temp_id"), str):
                echo["client_temp_id"] = payload["client_temp_id"] or None

        try:
            if not isinstance(raw, dict):
                raise ValidationError(
                    f"Operation {index} must be an object",
                    field=f"operations[{index}]",
                    code=ErrorCode.BATCH_INVALID_OPERATION,
                )
            try:
                kind = OperationType(op_type)
            except ValueError:
                raise ValidationError(
                    f"Unknown operation type: {op_type!r}",
                    field="type",
                    value=op_type,
                    code=ErrorCode.INVALID_OPERATION_TYPE,
                ) from None
            if not isinstance(payload, dict):
                raise ValidationError(
                    f"Missing payload for {kind.value} operation",
                    field="payload",
                    code=ErrorCode.MISSING_FIELD,
                )

            with self.store.savepoint(session):
                if kind is OperationType.CREATE:
                    result = self._create(
                        session, payload, temp_ids, include_parent_properties, include_internal
                    )
                elif kind is OperationType.UPDATE:
                    result = self._update(
                        session, payload, temp_ids, include_parent_properties, include_internal
                    )
                else:
                    result = self._delete(session, payload, temp_ids)

            # Only a create that survived its savepoint may be referenced later
            if result.client_temp_id and result.note is not None:
                temp_ids[result.client_temp_id] = result.note.id
            return result

        except NoteTreeError as e:
            logger.info(f"Batch operation {index} ({label}) failed: {e}")
            return OperationResult.failure(label, e, **echo)
        except IntegrityError as e:
            error = ConstraintError(
                f"Constraint violation during {label}: {e.orig}",
                operation=label,
                original_error=e,
            )
            logger.info(f"Batch operation {index} ({label}) failed: {error}")
            return OperationResult.failure(label, error, **echo)

    def _resolve_ref(self, value: Optional[str], temp_ids: Dict[str, str], field: str) -> Optional[str]:
        """Map a client temp id to the real id it was assigned in this batch.

        Real ids (UUIDs) pass through; their existence is checked by the
        store. A token that is neither is an unresolved forward reference.
        """
        if value is None:
            return None
        if value in temp_ids:
            return temp_ids[value]
        if looks_like_uuid(value):
            return value
        raise ReferenceResolutionError(
            f"Unresolved client_temp_id '{value}' in {field}",
            reference=value,
            field=field,
            code=ErrorCode.UNRESOLVED_TEMP_ID,
        )

    def _note_view(
        self,
        session: Session,
        note: Note,
        include_parent_properties: bool,
        include_internal: bool,
    ) -> NoteView:
        view = self.store.build_note_view(session, note, include_internal=include_internal)
        if include_parent_properties and note.active:
            view.parent_properties = self.resolver.resolve_ancestor_properties(
                note.id, include_internal=include_internal, session=session
            )
        return view

    def _create(
        self,
        session: Session,
        raw_payload: Dict[str, Any],
        temp_ids: Dict[str, str],
        include_parent_properties: bool,
        include_internal: bool,
    ) -> OperationResult:
        try:
            payload = CreateNotePayload.model_validate(raw_payload)
        except PydanticValidationError as e:
            raise _pydantic_to_validation_error(e, "create") from None

        if payload.client_temp_id is not None and payload.client_temp_id in temp_ids:
            raise ValidationError(
                f"Duplicate client_temp_id '{payload.client_temp_id}' in batch",
                field="client_temp_id",
                value=payload.client_temp_id,
                code=ErrorCode.DUPLICATE_TEMP_ID,
            )

        if payload.page_id is not None and looks_like_uuid(payload.page_id):
            page_id = payload.page_id
        elif payload.page_name is not None:
            page, _ = self.store.get_or_create_page(session, payload.page_name)
            page_id = page.id
        else:
            raise ValidationError(
                "Missing or invalid page_id or page_name for create operation",
                field="page_id",
                value=payload.page_id,
            )

        parent_id = self._resolve_ref(payload.parent_note_id, temp_ids, "parent_note_id")
        note = self.store.create_note(
            session,
            page_id,
            content=payload.content,
            parent_note_id=parent_id,
            order_index=payload.order_index,
            collapsed=payload.collapsed,
            note_id=payload.id,
        )
        return OperationResult.success(
            OperationType.CREATE.value,
            note=self._note_view(session, note, include_parent_properties, include_internal),
            client_temp_id=payload.client_temp_id,
        )

    def _update(
        self,
        session: Session,
        raw_payload: Dict[str, Any],
        temp_ids: Dict[str, str],
        include_parent_properties: bool,
        include_internal: bool,
    ) -> OperationResult:
        try:
            payload = UpdateNotePayload.model_validate(raw_payload)
        except PydanticValidationError as e:
            raise _pydantic_to_validation_error(e, "update") from None

        note_id = self._resolve_ref(payload.id, temp_ids, "id")
        changes = payload.changes()
        if "parent_note_id" in changes:
            changes["parent_note_id"] = self._resolve_ref(
                changes["parent_note_id"], temp_ids, "parent_note_id"
            )

        note = self.store.update_note(session, note_id, changes)
        return OperationResult.success(
            OperationType.UPDATE.value,
            note=self._note_view(session, note, include_parent_properties, include_internal),
        )

    def _delete(
        self,
        session: Session,
        raw_payload: Dict[str, Any],
        temp_ids: Dict[str, str],
    ) -> OperationResult:
        try:
            payload = DeleteNotePayload.model_validate(raw_payload)
        except PydanticValidationError as e:
            raise _pydantic_to_validation_error(e, "delete") from None

        note_id = self._resolve_ref(payload.id, temp_ids, "id")
        self.store.delete_note(session, note_id)
        return OperationResult.success(OperationType.DELETE.value, deleted_note_id=note_id)
