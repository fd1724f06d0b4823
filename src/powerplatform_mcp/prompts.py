"""
Prompt templates for describing Dataverse entities to an assistant.

Templates use {{placeholder}} markers. The build_* functions take JSON already
fetched by PowerPlatformService and return filled text; they never touch the
network.
"""

import json
import re
from typing import Any, Dict, List, Optional


ENTITY_OVERVIEW = """## Power Platform Entity: {{entityName}}

This is an overview of the '{{entityName}}' entity in Microsoft Power Platform/Dataverse:

### Entity Details
- Display Name: {{displayName}}
- Schema Name: {{schemaName}}
- Description: {{description}}
- Entity Set Name: {{entitySetName}}
- Primary Key: {{primaryKey}}
- Primary Name: {{primaryName}}

### Key Attributes
{{keyAttributes}}

Query records of this entity through the '{{entitySetName}}' collection."""

ATTRIBUTE_DETAILS = """## Attribute: {{attributeName}}

Details for the '{{attributeName}}' attribute of the '{{entityName}}' entity:

- Type: {{attributeType}}
- Display Name: {{displayName}}
- Description: {{description}}
- Required: {{required}}
- Max Length: {{maxLength}}

### Definition
```json
{{details}}
```"""

QUERY_TEMPLATE = """## OData Query Template for {{entityName}}

Use this template to build queries against the {{entityName}} entity:

```
{{entitySetName}}?$select={{selectFields}}&$filter={{filterConditions}}&$orderby={{orderBy}}&$top={{maxRecords}}
```

### Common Filter Examples
- Equals: `{{primaryName}} eq 'Contoso'`
- Contains: `contains({{primaryName}}, 'Contoso')`
- Created after a date: `createdon gt 2023-01-01T00:00:00Z`
- Multiple conditions: `{{primaryName}} eq 'Contoso' and statecode eq 0`"""

RELATIONSHIP_MAP = """## Relationship Map for {{entityName}}

This shows the relationships of the '{{entityName}}' entity:

### One-to-Many Relationships ({{entityName}} as Primary)
{{oneToManyRelationships}}

### Many-to-One Relationships ({{entityName}} as Related)
{{manyToOneRelationships}}

### Many-to-Many Relationships
{{manyToManyRelationships}}"""

PROMPT_TEMPLATES = {
    "ENTITY_OVERVIEW": ENTITY_OVERVIEW,
    "ATTRIBUTE_DETAILS": ATTRIBUTE_DETAILS,
    "QUERY_TEMPLATE": QUERY_TEMPLATE,
    "RELATIONSHIP_MAP": RELATIONSHIP_MAP,
}

MAX_KEY_ATTRIBUTES = 20

_PLACEHOLDER = re.compile(r"\{\{(\w+)\}\}")


def fill_template(template: str, **values: Any) -> str:
    """
    Replace {{name}} markers with values.

    Markers without a matching value are left as-is.
    """
    def replace(match: re.Match) -> str:
        name = match.group(1)
        return str(values[name]) if name in values else match.group(0)

    return _PLACEHOLDER.sub(replace, template)


def localized_label(metadata: Optional[Dict[str, Any]], key: str) -> Optional[str]:
    """Return metadata[key].UserLocalizedLabel.Label, or None."""
    label = ((metadata or {}).get(key) or {}).get("UserLocalizedLabel") or {}
    return label.get("Label")


def _bullets(lines: List[str]) -> str:
    return "\n".join(f"- {line}" for line in lines) if lines else "- None"


def build_entity_overview(
    entity_name: str,
    metadata: Dict[str, Any],
    attributes: Dict[str, Any],
) -> str:
    """
    Fill ENTITY_OVERVIEW.

    Args:
        entity_name: Logical name of the entity
        metadata: EntityDefinitions response
        attributes: Attributes collection response ({"value": [...]})
    """
    names = [attr.get("LogicalName", "") for attr in attributes.get("value", [])]
    key_attributes = _bullets(names[:MAX_KEY_ATTRIBUTES])
    if len(names) > MAX_KEY_ATTRIBUTES:
        key_attributes += f"\n- ... and {len(names) - MAX_KEY_ATTRIBUTES} more"

    return fill_template(
        ENTITY_OVERVIEW,
        entityName=entity_name,
        displayName=localized_label(metadata, "DisplayName") or entity_name,
        schemaName=metadata.get("SchemaName") or entity_name,
        description=localized_label(metadata, "Description") or "No description",
        entitySetName=metadata.get("EntitySetName") or "",
        primaryKey=metadata.get("PrimaryIdAttribute") or "",
        primaryName=metadata.get("PrimaryNameAttribute") or "",
        keyAttributes=key_attributes,
    )


def build_attribute_details(
    entity_name: str,
    attribute_name: str,
    attribute: Dict[str, Any],
) -> str:
    required = (attribute.get("RequiredLevel") or {}).get("Value") or "None"
    max_length = attribute.get("MaxLength")
    return fill_template(
        ATTRIBUTE_DETAILS,
        entityName=entity_name,
        attributeName=attribute_name,
        attributeType=attribute.get("AttributeType") or "Unknown",
        displayName=localized_label(attribute, "DisplayName") or attribute_name,
        description=localized_label(attribute, "Description") or "No description",
        required=required,
        maxLength=max_length if max_length is not None else "N/A",
        details=json.dumps(attribute, indent=2),
    )


def build_query_template(entity_name: str, metadata: Dict[str, Any]) -> str:
    primary_name = metadata.get("PrimaryNameAttribute") or "name"
    primary_key = metadata.get("PrimaryIdAttribute") or f"{entity_name}id"
    return fill_template(
        QUERY_TEMPLATE,
        entityName=entity_name,
        entitySetName=metadata.get("EntitySetName") or entity_name,
        primaryName=primary_name,
        selectFields=f"{primary_key},{primary_name},createdon",
        filterConditions=f"{primary_name} ne null",
        orderBy="createdon desc",
        maxRecords=50,
    )


def build_relationship_map(
    entity_name: str,
    relationships: Dict[str, Any],
    many_to_one: Optional[Dict[str, Any]] = None,
) -> str:
    """
    Fill RELATIONSHIP_MAP.

    Self-referencing relationships are listed once, under one-to-many.

    Args:
        entity_name: Logical name of the entity
        relationships: Result of PowerPlatformService.get_entity_relationships
        many_to_one: ManyToOneRelationships collection response ({"value": [...]})
    """
    one_to_many = (relationships.get("oneToMany") or {}).get("value", [])
    many_to_many = (relationships.get("manyToMany") or {}).get("value", [])
    many_to_one = (many_to_one or {}).get("value", [])

    primary = [
        f"{rel.get('SchemaName')}: {entity_name} (1) -> {rel.get('ReferencingEntity')} (N)"
        for rel in one_to_many
        if rel.get("ReferencedEntity") == entity_name
    ]
    related = [
        f"{rel.get('SchemaName')}: {rel.get('ReferencedEntity')} (1) -> {entity_name} (N)"
        for rel in many_to_one
        if rel.get("ReferencedEntity") != entity_name
    ]
    many = []
    for rel in many_to_many:
        other = rel.get("Entity2LogicalName")
        if other == entity_name:
            other = rel.get("Entity1LogicalName")
        many.append(f"{rel.get('SchemaName')}: {entity_name} (N) <-> {other} (N)")

    return fill_template(
        RELATIONSHIP_MAP,
        entityName=entity_name,
        oneToManyRelationships=_bullets(primary),
        manyToOneRelationships=_bullets(related),
        manyToManyRelationships=_bullets(many),
    )
