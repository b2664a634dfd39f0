# battle_logic/effects/__init__.py

from ..constants import AttributeCategory
from .base_effect import BaseEffect
from .basic_attribute import BasicAttributeEffect
from .modifier_attribute import ModifierAttributeEffect
from .status_effect import StatusEffect
from .ability_effect import AbilityEffect
from .card_effect import CardEffect
from .special_effect import NarrateEffect

EFFECT_HANDLER_MAP = {
    AttributeCategory.BASIC: BasicAttributeEffect,
    AttributeCategory.MODIFIER: ModifierAttributeEffect,
    AttributeCategory.STATUS: StatusEffect,
    AttributeCategory.ABILITY: AbilityEffect,
    AttributeCategory.CARD: CardEffect,
    AttributeCategory.SPECIAL: NarrateEffect,
}
