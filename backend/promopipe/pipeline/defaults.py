"""Default stage and edit collaborators wired to the LLM and render services."""

from promopipe.orchestrator.stages import EditCollaborators, StageSet
from promopipe.pipeline.analysis import analyze_source
from promopipe.pipeline.codegen import (
    edit_composition_code,
    fix_composition_syntax,
    generate_page_code,
    repair_render_error,
    translate_to_composition,
)
from promopipe.pipeline.render import render_composition
from promopipe.pipeline.script import edit_script, write_script


def default_stages() -> StageSet:
    return StageSet(
        analyze_source=analyze_source,
        write_script=write_script,
        generate_page_code=generate_page_code,
        translate=translate_to_composition,
        render=render_composition,
        repair=repair_render_error,
    )


def default_editors() -> EditCollaborators:
    return EditCollaborators(
        edit_code=edit_composition_code,
        fix_code=fix_composition_syntax,
        edit_script=edit_script,
    )
