import sentry_sdk


# 1. Unresolved items after a price resolution
def record_unresolved(strategy, unresolved):
    if not unresolved:
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("component", "PriceResolution")
        scope.set_tag("strategy", strategy)
        scope.set_extra("unresolved", [u.description for u in unresolved])
        sentry_sdk.capture_message(
            f"{len(unresolved)} item(s) could not be priced with {strategy}",
            level="info",
        )


# 2. Breakdown generation failures
def record_generation_failures(descriptions):
    if not descriptions:
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("component", "BreakdownGenerator")
        scope.set_tag("generation_failed", "true")
        scope.set_extra("descriptions", list(descriptions))
        sentry_sdk.capture_message(
            f"AHS generation failed for {len(descriptions)} item(s)",
            level="warning",
        )


# 3. Mutations rejected because the document is read-only
def record_blocked_mutation(document_id, action, reason):
    sentry_sdk.add_breadcrumb(
        category="lifecycle",
        message=f"Blocked {action} on document={document_id}: {reason}",
        level="warning",
    )


# 4. Completed resolutions
def breadcrumb_prices_applied(strategy, applied_count):
    sentry_sdk.add_breadcrumb(
        category="price_resolution",
        message=f"Applied {strategy} prices to {applied_count} item(s)",
        level="info",
    )


# 5. Rejected spreadsheet imports
def record_import_rejected(filename, errors):
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("component", "SpreadsheetImport")
        scope.set_extra("filename", filename or "")
        scope.set_extra("errors", errors)
        sentry_sdk.capture_message("Spreadsheet import rejected", level="info")
