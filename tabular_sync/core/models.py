"""
Data models for tabular model metadata.

Pydantic models representing the entities of a tabular semantic model.
Field aliases follow the tabular JSON (BIM) property names so that a
model definition can be loaded and written back without translation.
Cross-references between entities are held as names and resolved
through ModelGraph lookups.
"""

from __future__ import annotations


from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    SecretStr,
    SerializationInfo,
    SerializerFunctionWrapHandler,
    model_serializer,
    model_validator,
)


class ObjectType(str, Enum):
    """Kinds of model objects a translation can refer to."""

    MODEL = "model"
    TABLE = "table"
    COLUMN = "column"
    MEASURE = "measure"
    HIERARCHY = "hierarchy"
    LEVEL = "level"
    PERSPECTIVE = "perspective"
    ROLE = "role"


class CrossFilteringBehavior(str, Enum):
    """Direction in which a relationship propagates filters."""

    ONE_DIRECTION = "oneDirection"
    BOTH_DIRECTIONS = "bothDirections"
    AUTOMATIC = "automatic"


class ImpersonationMode(str, Enum):
    """Credential mode of a provider data source."""

    DEFAULT = "default"
    IMPERSONATE_ACCOUNT = "impersonateAccount"
    IMPERSONATE_ANONYMOUS = "impersonateAnonymous"
    IMPERSONATE_CURRENT_USER = "impersonateCurrentUser"
    IMPERSONATE_SERVICE_ACCOUNT = "impersonateServiceAccount"
    IMPERSONATE_UNATTENDED_ACCOUNT = "impersonateUnattendedAccount"


class BimObject(BaseModel):
    """Base for all model entities; unknown BIM properties are preserved."""

    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        protected_namespaces=(),
    )

    def to_bim(self) -> dict[str, Any]:
        """Dump to the tabular JSON shape."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Column(BimObject):
    """A column of a table."""

    name: str
    data_type: str = Field(default="string", alias="dataType")
    source_column: str | None = Field(default=None, alias="sourceColumn")
    expression: str | None = None
    description: str | None = None
    is_hidden: bool = Field(default=False, alias="isHidden")
    format_string: str | None = Field(default=None, alias="formatString")
    display_folder: str | None = Field(default=None, alias="displayFolder")


class Measure(BimObject):
    """A calculation defined on a table."""

    name: str
    expression: str = ""
    description: str | None = None
    format_string: str | None = Field(default=None, alias="formatString")
    is_hidden: bool = Field(default=False, alias="isHidden")
    display_folder: str | None = Field(default=None, alias="displayFolder")


class Level(BimObject):
    """A level of a hierarchy, bound to a column of the owning table."""

    name: str
    ordinal: int = 0
    column: str


class Hierarchy(BimObject):
    """A drill path over columns of one table."""

    name: str
    description: str | None = None
    is_hidden: bool = Field(default=False, alias="isHidden")
    levels: list[Level] = Field(default_factory=list)

    def find_level(self, name: str) -> Level | None:
        for level in self.levels:
            if level.name == name:
                return level
        return None


class PartitionSource(BimObject):
    """Where a partition loads its data from."""

    type: str = "query"
    query: str | None = None
    expression: str | None = None
    data_source: str | None = Field(default=None, alias="dataSource")


class Partition(BimObject):
    """A unit of data storage and refresh for a table."""

    name: str
    mode: str | None = None
    source: PartitionSource = Field(default_factory=PartitionSource)


class Table(BimObject):
    """A table with its columns, measures, hierarchies and partitions."""

    name: str
    description: str | None = None
    is_hidden: bool = Field(default=False, alias="isHidden")
    columns: list[Column] = Field(default_factory=list)
    measures: list[Measure] = Field(default_factory=list)
    hierarchies: list[Hierarchy] = Field(default_factory=list)
    partitions: list[Partition] = Field(default_factory=list)

    def find_column(self, name: str) -> Column | None:
        for column in self.columns:
            if column.name == name:
                return column
        return None

    def find_measure(self, name: str) -> Measure | None:
        for measure in self.measures:
            if measure.name == name:
                return measure
        return None

    def find_hierarchy(self, name: str) -> Hierarchy | None:
        for hierarchy in self.hierarchies:
            if hierarchy.name == name:
                return hierarchy
        return None


class Relationship(BimObject):
    """
    A single-column relationship between two tables.

    ``name`` is the internal identity of the relationship and may be
    changed on creation to avoid a conflict; ``display_name`` is derived
    from the endpoints and is what users recognise.
    """

    name: str
    from_table: str = Field(alias="fromTable")
    from_column: str = Field(alias="fromColumn")
    to_table: str = Field(alias="toTable")
    to_column: str = Field(alias="toColumn")
    is_active: bool = Field(default=True, alias="isActive")
    cross_filtering_behavior: CrossFilteringBehavior = Field(
        default=CrossFilteringBehavior.ONE_DIRECTION,
        alias="crossFilteringBehavior",
    )

    # Runtime state, never serialised
    copied_from_source: bool = Field(default=False, exclude=True)
    old_name: str | None = Field(default=None, exclude=True)
    name_modified: bool = Field(default=False, exclude=True)

    @property
    def display_name(self) -> str:
        return f"'{self.from_table}'[{self.from_column}] -> '{self.to_table}'[{self.to_column}]"

    @property
    def filters_both_directions(self) -> bool:
        return self.cross_filtering_behavior == CrossFilteringBehavior.BOTH_DIRECTIONS

    def participates(self, table_name: str) -> bool:
        return table_name in (self.from_table, self.to_table)

    def other_end(self, table_name: str) -> str:
        """Name of the participant opposite to ``table_name``."""
        return self.to_table if self.from_table == table_name else self.from_table

    def filters_from(self, table_name: str) -> bool:
        """True if this active relationship propagates filters away from ``table_name``."""
        if not self.is_active:
            return False
        if self.from_table == table_name:
            return True
        return self.filters_both_directions and self.to_table == table_name


class PerspectiveColumn(BimObject):
    name: str


class PerspectiveHierarchy(BimObject):
    name: str


class PerspectiveMeasure(BimObject):
    name: str


class PerspectiveTable(BimObject):
    """Membership of one table and (some of) its children in a perspective."""

    name: str
    columns: list[PerspectiveColumn] = Field(default_factory=list)
    hierarchies: list[PerspectiveHierarchy] = Field(default_factory=list)
    measures: list[PerspectiveMeasure] = Field(default_factory=list)


class Perspective(BimObject):
    """A named subset of the model."""

    name: str
    description: str | None = None
    tables: list[PerspectiveTable] = Field(default_factory=list)

    def find_table(self, name: str) -> PerspectiveTable | None:
        for table in self.tables:
            if table.name == name:
                return table
        return None


class ObjectTranslation(BimObject):
    """
    A translated property value for one model object.

    The object is addressed by kind and names: ``table`` is the owning
    table for columns, measures, hierarchies and levels, ``hierarchy`` the
    owning hierarchy for levels.
    """

    object_type: ObjectType = Field(alias="objectType")
    name: str
    table: str | None = None
    hierarchy: str | None = None
    property_name: str = Field(default="caption", alias="property")
    value: str = ""

    @property
    def object_key(self) -> tuple[str, str | None, str | None, str]:
        return (self.object_type.value, self.table, self.hierarchy, self.name)

    @property
    def translation_key(self) -> tuple[str, str | None, str | None, str, str]:
        return (*self.object_key, self.property_name)


def _property_from_key(key: str) -> str:
    # translatedDisplayFolder -> displayFolder
    suffix = key[len("translated"):]
    return suffix[:1].lower() + suffix[1:]


def _key_from_property(property_name: str) -> str:
    return "translated" + property_name[:1].upper() + property_name[1:]


def _flatten_translations(tree: dict[str, Any]) -> tuple[str, list[dict[str, Any]]]:
    """Turn a culture's nested ``translations`` tree into flat translation records."""
    model = tree.get("model") or {}
    model_name = model.get("name", "Model")
    flat: list[dict[str, Any]] = []

    def emit(node, object_type, table=None, hierarchy=None):
        for key, value in node.items():
            if key.startswith("translated") and isinstance(value, str):
                flat.append(
                    {
                        "objectType": object_type.value,
                        "name": node.get("name", model_name),
                        "table": table,
                        "hierarchy": hierarchy,
                        "property": _property_from_key(key),
                        "value": value,
                    }
                )

    emit(model, ObjectType.MODEL)
    for table in model.get("tables", []):
        emit(table, ObjectType.TABLE)
        for column in table.get("columns", []):
            emit(column, ObjectType.COLUMN, table["name"])
        for measure in table.get("measures", []):
            emit(measure, ObjectType.MEASURE, table["name"])
        for hierarchy in table.get("hierarchies", []):
            emit(hierarchy, ObjectType.HIERARCHY, table["name"])
            for level in hierarchy.get("levels", []):
                emit(level, ObjectType.LEVEL, table["name"], hierarchy["name"])
    for perspective in model.get("perspectives", []):
        emit(perspective, ObjectType.PERSPECTIVE)
    for role in model.get("roles", []):
        emit(role, ObjectType.ROLE)
    return model_name, flat


def _nest_translations(
    model_name: str, translations: list[ObjectTranslation]
) -> dict[str, Any]:
    model: dict[str, Any] = {"name": model_name}

    def child(parent: dict[str, Any], collection: str, name: str) -> dict[str, Any]:
        nodes = parent.setdefault(collection, [])
        for node in nodes:
            if node["name"] == name:
                return node
        node = {"name": name}
        nodes.append(node)
        return node

    for translation in translations:
        object_type = translation.object_type
        if object_type == ObjectType.MODEL:
            node = model
        elif object_type == ObjectType.TABLE:
            node = child(model, "tables", translation.name)
        elif object_type == ObjectType.PERSPECTIVE:
            node = child(model, "perspectives", translation.name)
        elif object_type == ObjectType.ROLE:
            node = child(model, "roles", translation.name)
        elif translation.table is None:
            continue
        else:
            table = child(model, "tables", translation.table)
            if object_type == ObjectType.COLUMN:
                node = child(table, "columns", translation.name)
            elif object_type == ObjectType.MEASURE:
                node = child(table, "measures", translation.name)
            elif object_type == ObjectType.HIERARCHY:
                node = child(table, "hierarchies", translation.name)
            elif translation.hierarchy is None:
                continue
            else:
                hierarchy = child(table, "hierarchies", translation.hierarchy)
                node = child(hierarchy, "levels", translation.name)
        node[_key_from_property(translation.property_name)] = translation.value
    return {"model": model}


class Culture(BimObject):
    """
    Translations of model metadata for one locale.

    Translations are held flat in ``object_translations``. A culture read
    from the nested ``translations`` tree of a model.bim is flattened on
    load and written back in that layout; ``translation_model_name``
    marks such a culture and keeps the model node's name.
    """

    name: str
    object_translations: list[ObjectTranslation] = Field(
        default_factory=list, alias="objectTranslations"
    )
    translation_model_name: str | None = Field(default=None, exclude=True)

    @model_validator(mode="before")
    @classmethod
    def _flatten_nested_translations(cls, data: Any) -> Any:
        if not isinstance(data, dict) or not isinstance(data.get("translations"), dict):
            return data
        data = dict(data)
        model_name, flat = _flatten_translations(data.pop("translations"))
        existing = data.pop("objectTranslations", None) or data.pop("object_translations", None) or []
        data["objectTranslations"] = [*existing, *flat]
        data["translation_model_name"] = model_name
        return data

    @model_serializer(mode="wrap")
    def _dump_nested_translations(
        self, handler: SerializerFunctionWrapHandler, info: SerializationInfo
    ) -> dict[str, Any]:
        data = handler(self)
        if self.translation_model_name is not None:
            data.pop("objectTranslations" if info.by_alias else "object_translations", None)
            data["translations"] = _nest_translations(
                self.translation_model_name, self.object_translations
            )
        return data

    def find_translation(self, translation: ObjectTranslation) -> ObjectTranslation | None:
        for existing in self.object_translations:
            if existing.translation_key == translation.translation_key:
                return existing
        return None


class RoleMember(BimObject):
    """A user or group assigned to a role."""

    member_name: str = Field(alias="memberName")
    member_id: str | None = Field(default=None, alias="memberId")
    identity_provider: str | None = Field(default=None, alias="identityProvider")

    @property
    def is_azure_ad(self) -> bool:
        return self.identity_provider == "AzureAD"


class TablePermission(BimObject):
    """Row filter for one table; ``name`` is the table name."""

    name: str
    filter_expression: str | None = Field(default=None, alias="filterExpression")


class Role(BimObject):
    """A security role."""

    name: str
    description: str | None = None
    model_permission: str = Field(default="read", alias="modelPermission")
    members: list[RoleMember] = Field(default_factory=list)
    table_permissions: list[TablePermission] = Field(
        default_factory=list, alias="tablePermissions"
    )


class DataSource(BimObject):
    """
    A provider connection.

    The password is collected just in time for processing and is
    excluded from every serialised form.
    """

    name: str
    type: str = "provider"
    connection_string: str = Field(default="", alias="connectionString")
    impersonation_mode: ImpersonationMode = Field(
        default=ImpersonationMode.DEFAULT, alias="impersonationMode"
    )
    account: str | None = None
    description: str | None = None
    password: SecretStr | None = Field(default=None, exclude=True)

    @property
    def is_provider(self) -> bool:
        return self.type == "provider"

    @property
    def requires_credentials(self) -> bool:
        return self.is_provider and self.impersonation_mode == ImpersonationMode.IMPERSONATE_ACCOUNT


class Model(BimObject):
    """Model-level properties and entity collections."""

    name: str = "Model"
    culture: str | None = None
    default_mode: str | None = Field(default=None, alias="defaultMode")
    data_sources: list[DataSource] = Field(default_factory=list, alias="dataSources")
    tables: list[Table] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    perspectives: list[Perspective] = Field(default_factory=list)
    cultures: list[Culture] = Field(default_factory=list)
    roles: list[Role] = Field(default_factory=list)


class Database(BimObject):
    """A tabular database definition."""

    name: str
    id: str | None = None
    compatibility_level: int = Field(default=1200, alias="compatibilityLevel")
    model: Model = Field(default_factory=Model)
