"""
Related-item expansion for change-set work items.
Walks a work item's relations, keeps the ones that point at other work items and filters them by
work item type and relationship name.
"""
import logging
from typing import List, Dict, Any, Optional

from correlate.models import LinkedItemsOptions, LinkedRelation

logger = logging.getLogger(__name__)

WORK_ITEM_URL_MARKER = '/workItems/'

_TYPE_FILTERS = {
    'reqOnly': ('Requirement',),
    'featureOnly': ('Feature',),
    'both': ('Requirement', 'Feature'),
    'none': (),
}

_RELATIONSHIP_FILTERS = {
    'affectsOnly': ('Affects',),
    'coversOnly': ('CoveredBy',),
    'both': ('Affects', 'CoveredBy'),
}


def is_work_item_relation(relation: Dict[str, Any]) -> bool:
    return WORK_ITEM_URL_MARKER in (relation.get('url') or '')


def type_matches(wi_type: str, linked_wi_types: str) -> bool:
    return wi_type in _TYPE_FILTERS.get(linked_wi_types, ())


def relationship_matches(rel_name: str, linked_wi_relationship: str) -> bool:
    return any(token in (rel_name or '') for token in _RELATIONSHIP_FILTERS.get(linked_wi_relationship, ()))


def build_linked_items(tickets, options: Optional[LinkedItemsOptions], work_item: Dict[str, Any]) -> List[LinkedRelation]:
    """Return the related work items of work_item that pass the type and relationship filters.

    A failure while resolving relations is logged and yields the items gathered so far.
    """
    linked: List[LinkedRelation] = []
    if options is None or not options.active:
        return linked
    relations = work_item.get('relations') or []
    if not relations:
        return linked
    logger.debug(f"Adding linked work items for {work_item.get('id')}")
    try:
        for relation in relations:
            if not is_work_item_relation(relation):
                continue
            related = tickets.get_work_item_by_url(relation['url'])
            fields = related.get('fields') or {}
            wi_type = fields.get('System.WorkItemType') or ''
            if not type_matches(wi_type, options.linked_wi_types):
                continue
            if not relationship_matches(relation.get('rel') or '', options.linked_wi_relationship):
                continue
            linked.append(LinkedRelation(
                related.get('id'),
                wi_type,
                fields.get('System.Title') or '',
                ((related.get('_links') or {}).get('html') or {}).get('href') or '',
                (relation.get('attributes') or {}).get('name') or '',
            ))
    except Exception as ex:
        logger.error(f"Error creating linked related items: {ex}")
    return linked
