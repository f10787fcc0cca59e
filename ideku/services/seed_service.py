"""
Demo reference data: organisation, roles, approval levels and two
saving-cost driven workflows.

Idempotent: rows that already exist (matched by name / id) are kept.
"""

import logging

from ideku.models import db
from ideku.models.organization import Category, Department, Division, Event, Role
from ideku.models.workflow import Level, LevelApprover, Workflow
from ideku.services import workflow_admin

logger = logging.getLogger(__name__)


ROLES = [
    ("Superuser", "Full access; may approve or bypass any stage"),
    ("Admin", "Maintains workflows and master data"),
    ("Initiator", "Submits ideas"),
    ("Workstream Leader", None),
    ("Mgr. Dept", None),
    ("GM Division", None),
    ("GM BPID", None),
    ("COO", None),
    ("SCFO", None),
]

DIVISIONS = [
    ("D01", "Operations", [("P01", "Production"), ("P02", "Maintenance")]),
    ("D02", "Finance", [("F01", "Accounting"), ("F02", "Treasury")]),
    ("D03", "Information Technology", [("I01", "Infrastructure"), ("I02", "Applications")]),
]

CATEGORIES = ["General Transformation", "Increase Revenue", "Cost Reduction (CR)", "Digitalization"]

EVENTS = ["Hackathon", "Kaizen Week"]

# level name → roles allowed to sign it off
LEVELS = {
    "Workstream": ["Workstream Leader"],
    "Department": ["Mgr. Dept"],
    "Division": ["GM Division"],
    "BPID": ["GM BPID"],
    "Executive": ["COO", "SCFO"],
}

# (name, description, priority, [(condition_type, operator, value)], [(stage, level, mandatory, parallel)])
WORKFLOWS = [
    (
        "WF_High Value",
        "Ideas with saving cost >= 20,000",
        1,
        [("SAVING_COST", ">=", "20000")],
        [
            (1, "Workstream", True, False),
            (2, "Department", True, False),
            (3, "Division", True, True),
            (4, "BPID", True, True),
            (5, "Executive", True, False),
        ],
    ),
    (
        "WF_Standard",
        "Ideas with saving cost < 20,000",
        2,
        [("SAVING_COST", "<", "20000")],
        [
            (1, "Workstream", True, False),
            (2, "Department", True, False),
            (3, "Division", False, False),
        ],
    ),
]


def _get_or_create(model, defaults=None, **lookup):
    row = model.query.filter_by(**lookup).first()
    if row is not None:
        return row, False
    row = model(**lookup, **(defaults or {}))
    db.session.add(row)
    db.session.flush()
    return row, True


def seed_demo_data() -> dict:
    """Insert missing demo rows. Returns per-entity counts of new rows."""
    counts = {"roles": 0, "divisions": 0, "departments": 0, "categories": 0,
              "events": 0, "levels": 0, "workflows": 0}

    roles = {}
    for name, description in ROLES:
        roles[name], created = _get_or_create(Role, name=name, defaults={"description": description})
        counts["roles"] += created

    for div_id, div_name, departments in DIVISIONS:
        _, created = _get_or_create(Division, id=div_id, defaults={"name": div_name})
        counts["divisions"] += created
        for dept_id, dept_name in departments:
            _, created = _get_or_create(
                Department, id=dept_id, defaults={"name": dept_name, "division_id": div_id},
            )
            counts["departments"] += created

    for name in CATEGORIES:
        counts["categories"] += _get_or_create(Category, name=name)[1]
    for name in EVENTS:
        counts["events"] += _get_or_create(Event, name=name)[1]

    levels = {}
    for level_name, role_names in LEVELS.items():
        level, created = _get_or_create(Level, name=level_name)
        counts["levels"] += created
        for role_name in role_names:
            _get_or_create(LevelApprover, level_id=level.id, role_id=roles[role_name].id)
        levels[level_name] = level
    db.session.commit()

    for name, description, priority, conditions, stages in WORKFLOWS:
        if Workflow.query.filter_by(name=name).first() is not None:
            continue
        wf = workflow_admin.create_workflow(name=name, description=description, priority=priority)
        for condition_type, operator, value in conditions:
            workflow_admin.add_condition(
                wf["id"], condition_type=condition_type, operator=operator, condition_value=value,
            )
        for stage, level_name, mandatory, parallel in stages:
            workflow_admin.add_stage(
                wf["id"], stage=stage, level_id=levels[level_name].id,
                is_mandatory=mandatory, is_parallel=parallel,
            )
        counts["workflows"] += 1

    logger.info("Demo data seeded: %s", counts)
    return counts
