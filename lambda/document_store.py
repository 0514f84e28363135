from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from boto3.dynamodb.conditions import Attr
from boto3.dynamodb.conditions import Key
from botocore.exceptions import ClientError


USERS = "users"
BOARDS = "boards"
CARDS = "cards"
TASKS = "tasks"
INVITATIONS = "invitations"
GITHUB_ATTACHMENTS = "github_attachments"
VERIFICATION_CODES = "verification_codes"

TABLE_ENV_VARS = {
    USERS: "USERS_TABLE",
    BOARDS: "BOARDS_TABLE",
    CARDS: "CARDS_TABLE",
    TASKS: "TASKS_TABLE",
    INVITATIONS: "INVITATIONS_TABLE",
    GITHUB_ATTACHMENTS: "GITHUB_ATTACHMENTS_TABLE",
    VERIFICATION_CODES: "VERIFICATION_CODES_TABLE",
}

KEY_FIELDS = {VERIFICATION_CODES: "email"}

# (collection, field) -> secondary index whose partition key is that field.
QUERY_INDEXES = {
    (USERS, "email"): "email-index",
    (CARDS, "boardId"): "boardId-createdAt-index",
    (TASKS, "cardId"): "cardId-order-index",
    (TASKS, "boardId"): "boardId-index",
    (INVITATIONS, "memberId"): "memberId-index",
    (INVITATIONS, "boardId"): "boardId-index",
    (GITHUB_ATTACHMENTS, "taskId"): "taskId-index",
}


class StoreError(Exception):
    pass


class MissingDocumentError(StoreError):
    def __init__(self, collection: str, key: str) -> None:
        super().__init__(f"{collection} document not found: {key}")
        self.collection = collection
        self.key = key


class DuplicateDocumentError(StoreError):
    def __init__(self, collection: str, key: str) -> None:
        super().__init__(f"{collection} document already exists: {key}")
        self.collection = collection
        self.key = key


@dataclass(frozen=True)
class TableNames:
    users: str
    boards: str
    cards: str
    tasks: str
    invitations: str
    github_attachments: str
    verification_codes: str

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "TableNames":
        env = os.environ if environ is None else environ
        return cls(**{name: str(env.get(var) or "").strip() for name, var in TABLE_ENV_VARS.items()})

    def missing(self) -> list[str]:
        return [var for name, var in TABLE_ENV_VARS.items() if not getattr(self, name)]

    def for_collection(self, collection: str) -> str:
        if collection not in TABLE_ENV_VARS:
            raise StoreError(f"unknown collection: {collection}")
        name = getattr(self, collection)
        if not name:
            raise StoreError(f"{TABLE_ENV_VARS[collection]} is not configured")
        return name


def key_field(collection: str) -> str:
    return KEY_FIELDS.get(collection, "id")


def _plain(value: Any) -> Any:
    # DynamoDB hands numbers back as Decimal and string sets as set.
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, set):
        return sorted(_plain(v) for v in value)
    return value


def _error_code(exc: ClientError) -> str:
    return str(exc.response.get("Error", {}).get("Code") or "")


class DynamoDocumentStore:
    """Schemaless document collections on top of one DynamoDB table each.

    Every method takes the logical collection name; documents are plain
    dicts keyed by ``id`` (``email`` for verification codes). Reads return
    plain Python values (no Decimal).
    """

    def __init__(self, ddb_resource: Any, table_names: TableNames) -> None:
        self._ddb = ddb_resource
        self._names = table_names

    def _table(self, collection: str) -> Any:
        return self._ddb.Table(self._names.for_collection(collection))

    def _key(self, collection: str, key: str) -> dict[str, Any]:
        return {key_field(collection): key}

    def get(self, collection: str, key: str) -> dict[str, Any] | None:
        if not key:
            return None
        resp = self._table(collection).get_item(Key=self._key(collection, key), ConsistentRead=True)
        item = resp.get("Item") if isinstance(resp, dict) else None
        return _plain(item) if item else None

    def create(self, collection: str, doc: dict[str, Any]) -> dict[str, Any]:
        kf = key_field(collection)
        try:
            self._table(collection).put_item(
                Item=doc,
                ConditionExpression="attribute_not_exists(#key)",
                ExpressionAttributeNames={"#key": kf},
            )
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                raise DuplicateDocumentError(collection, str(doc.get(kf) or "")) from e
            raise
        return doc

    def put(self, collection: str, doc: dict[str, Any]) -> dict[str, Any]:
        self._table(collection).put_item(Item=doc)
        return doc

    def update(
        self,
        collection: str,
        key: str,
        fields: dict[str, Any],
        *,
        remove: tuple[str, ...] = (),
    ) -> dict[str, Any]:
        names: dict[str, str] = {"#key": key_field(collection)}
        values: dict[str, Any] = {}
        set_parts: list[str] = []
        for i, (field, value) in enumerate(fields.items()):
            names[f"#f{i}"] = field
            values[f":f{i}"] = value
            set_parts.append(f"#f{i} = :f{i}")
        remove_parts: list[str] = []
        for i, field in enumerate(remove):
            names[f"#r{i}"] = field
            remove_parts.append(f"#r{i}")
        if not set_parts and not remove_parts:
            current = self.get(collection, key)
            if current is None:
                raise MissingDocumentError(collection, key)
            return current

        expr = ""
        if set_parts:
            expr = "SET " + ", ".join(set_parts)
        if remove_parts:
            expr = (expr + " REMOVE " + ", ".join(remove_parts)).strip()

        kwargs: dict[str, Any] = {
            "Key": self._key(collection, key),
            "UpdateExpression": expr,
            "ConditionExpression": "attribute_exists(#key)",
            "ExpressionAttributeNames": names,
            "ReturnValues": "ALL_NEW",
        }
        if values:
            kwargs["ExpressionAttributeValues"] = values
        try:
            out = self._table(collection).update_item(**kwargs)
        except ClientError as e:
            if _error_code(e) == "ConditionalCheckFailedException":
                raise MissingDocumentError(collection, key) from e
            raise
        return _plain(out.get("Attributes") or {})

    def delete(self, collection: str, key: str) -> dict[str, Any] | None:
        """Delete one document; returns the removed document or None when absent."""
        if not key:
            return None
        out = self._table(collection).delete_item(Key=self._key(collection, key), ReturnValues="ALL_OLD")
        old = out.get("Attributes") if isinstance(out, dict) else None
        return _plain(old) if old else None

    def query(self, collection: str, field: str, value: Any, *, descending: bool = False) -> list[dict[str, Any]]:
        index_name = QUERY_INDEXES.get((collection, field))
        if not index_name:
            raise StoreError(f"no query index for {collection}.{field}")
        out: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        while True:
            kwargs: dict[str, Any] = {
                "IndexName": index_name,
                "KeyConditionExpression": Key(field).eq(value),
                "ScanIndexForward": not descending,
            }
            if start_key:
                kwargs["ExclusiveStartKey"] = start_key
            page = self._table(collection).query(**kwargs)
            for item in page.get("Items", []) or []:
                if isinstance(item, dict):
                    out.append(_plain(item))
            start_key = page.get("LastEvaluatedKey")
            if not start_key:
                return out

    def scan_contains(self, collection: str, field: str, value: Any) -> list[dict[str, Any]]:
        return self._scan(collection, Attr(field).contains(value))

    def scan_all(self, collection: str) -> list[dict[str, Any]]:
        return self._scan(collection, None)

    def _scan(self, collection: str, filter_expr: Any) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        start_key: dict[str, Any] | None = None
        while True:
            kwargs: dict[str, Any] = {}
            if filter_expr is not None:
                kwargs["FilterExpression"] = filter_expr
            if start_key:
                kwargs["ExclusiveStartKey"] = start_key
            page = self._table(collection).scan(**kwargs)
            for item in page.get("Items", []) or []:
                if isinstance(item, dict):
                    out.append(_plain(item))
            start_key = page.get("LastEvaluatedKey")
            if not start_key:
                return out

    def append_unique(self, collection: str, key: str, field: str, value: Any) -> bool:
        """Atomically add ``value`` to a list field unless it is already present.

        Returns True when the value was appended, False when it was already there.
        """
        try:
            self._table(collection).update_item(
                Key=self._key(collection, key),
                UpdateExpression="SET #field = list_append(if_not_exists(#field, :empty), :one)",
                ConditionExpression="attribute_exists(#key) AND NOT contains(#field, :value)",
                ExpressionAttributeNames={"#key": key_field(collection), "#field": field},
                ExpressionAttributeValues={":empty": [], ":one": [value], ":value": value},
            )
        except ClientError as e:
            if _error_code(e) != "ConditionalCheckFailedException":
                raise
            if self.get(collection, key) is None:
                raise MissingDocumentError(collection, key) from e
            return False
        return True

    def create_and_increment(
        self,
        collection: str,
        doc: dict[str, Any],
        *,
        counter_collection: str,
        counter_key: str,
        counter_field: str,
    ) -> bool:
        """Create a document and increment a counter on another one in one transaction.

        When the counter document does not exist the document is created on
        its own. Returns True when the counter was incremented.
        """
        kf = key_field(collection)
        client = self._ddb.meta.client
        items = [
            {
                "Put": {
                    "TableName": self._names.for_collection(collection),
                    "Item": doc,
                    "ConditionExpression": "attribute_not_exists(#key)",
                    "ExpressionAttributeNames": {"#key": kf},
                }
            },
            {
                "Update": {
                    "TableName": self._names.for_collection(counter_collection),
                    "Key": self._key(counter_collection, counter_key),
                    "UpdateExpression": "ADD #field :one",
                    "ConditionExpression": "attribute_exists(#key)",
                    "ExpressionAttributeNames": {
                        "#key": key_field(counter_collection),
                        "#field": counter_field,
                    },
                    "ExpressionAttributeValues": {":one": 1},
                }
            },
        ]
        try:
            client.transact_write_items(TransactItems=items)
        except ClientError as e:
            if _error_code(e) != "TransactionCanceledException":
                raise
            reasons = [str((r or {}).get("Code") or "None") for r in e.response.get("CancellationReasons") or []]
            if reasons and reasons[0] == "ConditionalCheckFailed":
                raise DuplicateDocumentError(collection, str(doc.get(kf) or "")) from e
            if len(reasons) > 1 and reasons[1] == "ConditionalCheckFailed":
                self.create(collection, doc)
                return False
            raise StoreError(f"transaction cancelled: {','.join(reasons) or 'unknown'}") from e
        return True

    def delete_and_decrement(
        self,
        collection: str,
        key: str,
        *,
        counter_collection: str,
        counter_key: str,
        counter_field: str,
    ) -> bool:
        """Delete a document and decrement a counter on another one in one transaction.

        The counter never goes below zero. When the counter document is gone
        or already at zero the document is still deleted on its own. Returns
        True when the counter was decremented.
        """
        client = self._ddb.meta.client
        items = [
            {
                "Delete": {
                    "TableName": self._names.for_collection(collection),
                    "Key": self._key(collection, key),
                    "ConditionExpression": "attribute_exists(#key)",
                    "ExpressionAttributeNames": {"#key": key_field(collection)},
                }
            },
            {
                "Update": {
                    "TableName": self._names.for_collection(counter_collection),
                    "Key": self._key(counter_collection, counter_key),
                    "UpdateExpression": "ADD #field :neg",
                    "ConditionExpression": "attribute_exists(#key) AND #field >= :one",
                    "ExpressionAttributeNames": {
                        "#key": key_field(counter_collection),
                        "#field": counter_field,
                    },
                    "ExpressionAttributeValues": {":neg": -1, ":one": 1},
                }
            },
        ]
        try:
            client.transact_write_items(TransactItems=items)
        except ClientError as e:
            if _error_code(e) != "TransactionCanceledException":
                raise
            reasons = [str((r or {}).get("Code") or "None") for r in e.response.get("CancellationReasons") or []]
            if reasons and reasons[0] == "ConditionalCheckFailed":
                # Already deleted by an earlier attempt.
                return False
            if len(reasons) > 1 and reasons[1] == "ConditionalCheckFailed":
                self.delete(collection, key)
                return False
            raise StoreError(f"transaction cancelled: {','.join(reasons) or 'unknown'}") from e
        return True
