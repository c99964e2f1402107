"""
Plan action resolver: expand `actions` into concrete file writes.

  requestAnalysis  analyze a URL and keep it as design context; add the
                   styling toolchain + design.json, but no page file
  writeAnalyzed    analyze a URL and materialize it as a page + stylesheet
                   at the requested path (or write literal `content` when
                   no URL is given)

Works on a copy: if any analysis fails the exception propagates and the
caller's plan is left untouched, so a half-resolved plan is never applied.
"""

from typing import Awaitable, Callable

from sitecraft import scaffold
from sitecraft.models import PageAnalysis, Plan, PlanAction


AnalyzeFn = Callable[[str], Awaitable[PageAnalysis]]

REQUEST_ANALYSIS = "requestAnalysis"
WRITE_ANALYZED = "writeAnalyzed"


def _add_styling_toolchain(plan: Plan, analysis: PageAnalysis):
    plan.files.setdefault(scaffold.TAILWIND_CONFIG_PATH, scaffold.TAILWIND_CONFIG)
    plan.files.setdefault(scaffold.POSTCSS_CONFIG_PATH, scaffold.POSTCSS_CONFIG)
    for name, version in scaffold.STYLING_DEV_DEPENDENCIES.items():
        plan.dev_dependencies.setdefault(name, version)
    plan.files[scaffold.DESIGN_SUMMARY_PATH] = scaffold.build_design_summary(analysis)


async def _request_analysis(plan: Plan, action: PlanAction, analyze: AnalyzeFn):
    url = action.url or action.from_analysis_of
    if not url:
        print("  [actions] requestAnalysis without a url, skipped")
        return
    analysis = await analyze(url)
    plan.design = analysis
    _add_styling_toolchain(plan, analysis)


async def _write_analyzed(plan: Plan, action: PlanAction, analyze: AnalyzeFn):
    url = action.from_analysis_of or action.url
    if url:
        analysis = await analyze(url)
        plan.design = analysis
        dest = action.path or scaffold.PAGE_PATH
        plan.files[dest] = scaffold.build_page_from_analysis(analysis)
        plan.files[scaffold.GLOBALS_CSS_PATH] = scaffold.build_globals_css(analysis)
        _add_styling_toolchain(plan, analysis)
    elif action.path and isinstance(action.content, str):
        plan.files[action.path] = action.content
    else:
        print("  [actions] writeAnalyzed with neither url nor content, nothing to write")


_HANDLERS = {
    REQUEST_ANALYSIS: _request_analysis,
    WRITE_ANALYZED: _write_analyzed,
}


async def resolve_actions(plan: Plan, analyze: AnalyzeFn) -> Plan:
    """Return a new Plan with every action resolved, in order."""
    resolved = plan.model_copy(deep=True)
    resolved.design = plan.design

    for action in resolved.actions:
        handler = _HANDLERS.get(action.type)
        if handler is None:
            print(f"  [actions] Unknown action type {action.type!r}, ignored")
            continue
        await handler(resolved, action, analyze)

    return resolved
