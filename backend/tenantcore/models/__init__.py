from .tenancy import Organization, PLATFORM_ORGANIZATION_ID, generate_id, format_decimal
from .entities import CoreEntity, ENTITY_STATUS_DELETED, ACTOR_ENTITY_TYPE, ROLE_ENTITY_TYPE
from .dynamic_data import CoreDynamicData, FIELD_VALUE_SLOTS, NUMBER_SCALE
from .relationships import CoreRelationship, MEMBER_OF_ORG, HAS_ROLE, MEMBERSHIP_RELATIONSHIP_TYPES
from .transactions import UniversalTransaction, UniversalTransactionLine
from .security import SecurityEvent

__all__ = [
    'Organization', 'PLATFORM_ORGANIZATION_ID', 'generate_id', 'format_decimal',
    'CoreEntity', 'ENTITY_STATUS_DELETED', 'ACTOR_ENTITY_TYPE', 'ROLE_ENTITY_TYPE',
    'CoreDynamicData', 'FIELD_VALUE_SLOTS', 'NUMBER_SCALE',
    'CoreRelationship', 'MEMBER_OF_ORG', 'HAS_ROLE', 'MEMBERSHIP_RELATIONSHIP_TYPES',
    'UniversalTransaction', 'UniversalTransactionLine',
    'SecurityEvent',
]
