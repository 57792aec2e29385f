"""Expense records stored in Cloud Firestore.

Expenses live in a per-user collection, ``users/{uid}/expenses``. Records are
never removed: deleting an expense sets its ``deleted`` flag, and reads only
return records where the flag is false, newest ``date`` first.
"""
import dataclasses
import datetime
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter

from ..status import status

USERS_COLLECTION: str = 'users'
EXPENSES_COLLECTION: str = 'expenses'

UPDATABLE_FIELDS = ('description', 'date', 'cost', 'deleted')


@dataclasses.dataclass
class Expense:
    """A single expense record.

    ``id`` is assigned by the database when the record is created.
    """
    description: str
    date: str
    cost: float
    deleted: bool = False
    id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)


def validate_description(value: Any) -> str:
    """
    Return the trimmed description.

    Raises:
        status.ValidationException: If the description is missing or blank.
    """
    if not isinstance(value, str) or not value.strip():
        raise status.ValidationException('Description is required')
    return value.strip()


def validate_cost(value: Any) -> float:
    """
    Return the cost as a float.

    Accepts ints, floats and numeric strings.

    Raises:
        status.ValidationException: If the cost is not a finite number >= 0.
    """
    if isinstance(value, bool) or value is None:
        raise status.ValidationException('Enter a valid non-negative cost')
    if isinstance(value, str) and not value.strip():
        raise status.ValidationException('Enter a valid non-negative cost')
    try:
        cost = float(value)
    except (TypeError, ValueError, OverflowError) as ex:
        raise status.ValidationException('Enter a valid non-negative cost') from ex
    if not math.isfinite(cost) or cost < 0:
        raise status.ValidationException('Enter a valid non-negative cost')
    return cost


def _date_to_str(value: Any) -> str:
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    return str(value)


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def invalid_fields(data: Mapping[str, Any]) -> List[str]:
    """Return the names of the fields of a stored document that are missing or of the wrong type."""
    bad = []
    if not isinstance(data.get('description'), str):
        bad.append('description')
    if not isinstance(data.get('date'), (str, datetime.date)):
        bad.append('date')
    if not _is_number(data.get('cost')):
        bad.append('cost')
    if not isinstance(data.get('deleted'), bool):
        bad.append('deleted')
    return bad


def decode_expense(doc_id: str, data: Mapping[str, Any]) -> Expense:
    """
    Decode a stored document into an Expense.

    Raises:
        status.ExpenseDecodeException: If any field is missing or malformed.
    """
    bad = invalid_fields(data)
    if bad:
        raise status.ExpenseDecodeException(doc_id, bad)
    return Expense(
        id=doc_id,
        description=data['description'],
        date=_date_to_str(data['date']),
        cost=float(data['cost']),
        deleted=data['deleted'],
    )


def coerce_expense(doc_id: str, data: Mapping[str, Any]) -> Expense:
    """
    Build an Expense from a stored document, substituting defaults
    (``''``, ``0.0``, ``False``) for missing or malformed fields.
    """
    description = data.get('description')
    date = data.get('date')
    deleted = data.get('deleted')

    try:
        cost = float(data.get('cost') if data.get('cost') is not None else 0)
    except (TypeError, ValueError, OverflowError):
        cost = 0.0
    if not math.isfinite(cost):
        cost = 0.0

    return Expense(
        id=doc_id,
        description='' if description is None else str(description),
        date='' if date is None else _date_to_str(date),
        cost=cost,
        deleted=False if deleted is None else bool(deleted),
    )


def read_expense(doc_id: str, data: Mapping[str, Any], strict: bool = False) -> Expense:
    """Decode a document, falling back to :func:`coerce_expense` unless ``strict``."""
    if strict:
        return decode_expense(doc_id, data)

    bad = invalid_fields(data)
    if bad:
        logging.warning(f'Expense "{doc_id}" has invalid fields ({", ".join(bad)}); using defaults.')
        return coerce_expense(doc_id, data)
    return decode_expense(doc_id, data)


def build_update(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Build the partial update body for the fields present in ``fields``.

    A key set to ``None`` counts as absent and leaves the stored value
    untouched, so no field can be cleared through an update. Unknown keys are
    ignored.

    Raises:
        status.ValidationException: If the description is blank or the cost is invalid.
    """
    body: Dict[str, Any] = {}
    if fields.get('description') is not None:
        body['description'] = validate_description(fields['description'])
    if fields.get('date') is not None:
        body['date'] = _date_to_str(fields['date'])
    if fields.get('cost') is not None:
        body['cost'] = validate_cost(fields['cost'])
    if fields.get('deleted') is not None:
        body['deleted'] = bool(fields['deleted'])

    ignored = set(fields).difference(UPDATABLE_FIELDS)
    if ignored:
        logging.debug(f'Ignoring non-updatable fields: {", ".join(sorted(ignored))}')
    return body


class ExpenseStore:
    """CRUD operations on the signed-in user's expenses.

    Args:
        client_provider: Coroutine function returning a Firestore ``AsyncClient``.
        identity: Returns the uid of the signed-in user, or None.
    """

    def __init__(self, client_provider: Callable[[], Awaitable[Any]],
                 identity: Callable[[], Optional[str]]) -> None:
        self._client_provider = client_provider
        self._identity = identity

    def require_uid(self) -> str:
        """
        Raises:
            status.NotSignedInException: If no user is signed in.
        """
        uid = self._identity()
        if not uid:
            raise status.NotSignedInException
        return uid

    async def _collection(self, uid: str) -> Any:
        client = await self._client_provider()
        return client.collection(USERS_COLLECTION).document(uid).collection(EXPENSES_COLLECTION)

    async def fetch_expenses(self, strict: bool = False) -> List[Expense]:
        """
        Fetch the signed-in user's expenses that are not deleted, newest first.

        Args:
            strict: Raise on malformed documents instead of substituting defaults.

        Returns:
            A list of Expense records, empty when there are none.

        Raises:
            status.NotSignedInException: If no user is signed in.
            status.ExpenseDecodeException: In strict mode, for a malformed document.
        """
        uid = self.require_uid()
        collection = await self._collection(uid)
        query = (
            collection
            .where(filter=FieldFilter('deleted', '==', False))
            .order_by('date', direction=firestore.Query.DESCENDING)
        )

        expenses: List[Expense] = []
        async for snapshot in query.stream():
            expenses.append(read_expense(snapshot.id, snapshot.to_dict() or {}, strict=strict))

        logging.debug(f'Fetched {len(expenses)} expense(s).')
        return expenses

    async def get_expense(self, expense_id: str) -> Optional[Expense]:
        """
        Read a single expense by id, whether or not it is deleted.

        Returns:
            Expense or None: None if no such record exists.
        """
        uid = self.require_uid()
        expense_id = _validate_id(expense_id)
        collection = await self._collection(uid)
        snapshot = await collection.document(expense_id).get()
        if not snapshot.exists:
            return None
        return read_expense(snapshot.id, snapshot.to_dict() or {})

    async def add_expense(self, expense: Union[Expense, Mapping[str, Any]]) -> str:
        """
        Validate and store a new expense.

        Args:
            expense: An Expense or a mapping with ``description``, ``date`` and ``cost``.
                Any ``id`` or ``deleted`` value is ignored.

        Returns:
            str: The id assigned to the new record.

        Raises:
            status.NotSignedInException: If no user is signed in.
            status.ValidationException: If the description is blank or the cost invalid.
        """
        uid = self.require_uid()
        fields = expense.to_dict() if isinstance(expense, Expense) else dict(expense)

        date = fields.get('date')
        payload = {
            'description': validate_description(fields.get('description')),
            'date': '' if date is None else _date_to_str(date),
            'cost': validate_cost(fields.get('cost')),
            'deleted': False,
            'createdAt': firestore.SERVER_TIMESTAMP,
        }

        collection = await self._collection(uid)
        _, ref = await collection.add(payload)
        logging.info(f'Added expense "{ref.id}".')
        return ref.id

    async def update_expense(self, expense_id: str, fields: Mapping[str, Any]) -> None:
        """
        Apply a partial update to an expense. Absent fields are left untouched.

        Raises:
            status.NotSignedInException: If no user is signed in.
            status.ValidationException: If the id is empty or a field is invalid.
        """
        uid = self.require_uid()
        expense_id = _validate_id(expense_id)
        body = build_update(fields)
        if not body:
            logging.debug(f'Nothing to update for expense "{expense_id}".')
            return

        collection = await self._collection(uid)
        await collection.document(expense_id).update(body)
        logging.info(f'Updated expense "{expense_id}": {", ".join(sorted(body))}.')

    async def delete_expense(self, expense_id: str) -> None:
        """
        Soft delete an expense by setting its ``deleted`` flag.

        Raises:
            status.NotSignedInException: If no user is signed in.
            status.ValidationException: If the id is empty.
        """
        uid = self.require_uid()
        expense_id = _validate_id(expense_id)
        collection = await self._collection(uid)
        await collection.document(expense_id).update({'deleted': True})
        logging.info(f'Deleted expense "{expense_id}".')


def _validate_id(expense_id: Any) -> str:
    if expense_id is None or not str(expense_id).strip():
        raise status.ValidationException('An expense id is required')
    return str(expense_id)
