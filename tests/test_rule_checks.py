from jobboard.engine.catalog import RuleCatalog, default_catalog
from jobboard.engine.rule_checks import RuleCatalogError, validate_catalog
from jobboard.models.constraints import AttachmentRule, DropRule
from jobboard.models.entities import ResourceType as T, RowType as R


def _with(attachment_rules=(), drop_rules=()):
    base = default_catalog()
    return RuleCatalog(
        list(base.attachment_rules) + list(attachment_rules),
        list(base.drop_rules) + list(drop_rules),
        base.row_schemas,
    )


class TestValidateCatalog:
    """Consistency checks run before a catalog is swapped in."""

    def test_default_catalog_is_clean(self):
        report = validate_catalog(default_catalog())
        assert report.is_valid
        assert report.errors == []
        assert report.warnings == []

    def test_duplicate_attachment_rule_is_error(self):
        report = validate_catalog(_with([AttachmentRule(T.DRIVER, T.TRUCK, max_count=2)]))
        assert not report.is_valid
        assert report.errors == ["Duplicate rules found for driver -> truck"]

    def test_required_but_not_attachable_is_error(self):
        report = validate_catalog(
            _with([AttachmentRule(T.GROUNDMAN, T.PAVER, can_attach=False, max_count=0, is_required=True)])
        )
        assert any("required but canAttach is false" in e for e in report.errors)

    def test_duplicate_drop_rule_is_error(self):
        report = validate_catalog(_with(drop_rules=[DropRule(R.CREW, frozenset({T.LABORER}))]))
        assert report.errors == ["Multiple drop rules found for row type: crew"]

    def test_high_max_count_warns(self):
        report = validate_catalog(_with([AttachmentRule(T.LABORER, T.ROLLER, max_count=8)]))
        assert report.is_valid
        assert any("High maxCount (8)" in w for w in report.warnings)

    def test_attachable_with_zero_max_count_warns(self):
        report = validate_catalog(_with([AttachmentRule(T.LABORER, T.ROLLER, max_count=0)]))
        assert any("maxCount is 0" in w for w in report.warnings)

    def test_empty_row_warns(self):
        catalog = RuleCatalog(default_catalog().attachment_rules, [DropRule(R.TACK, frozenset())])
        report = validate_catalog(catalog)
        assert any("Tack has no allowed resource types" in w for w in report.warnings)

    def test_missing_essential_rows(self):
        report = validate_catalog(RuleCatalog(default_catalog().attachment_rules, []))
        for row in ("Forman", "Equipment", "crew", "trucks"):
            assert f"Missing drop rule for essential row type: {row}" in report.warnings
            assert f"Add drop rule for {row} row" in report.suggestions

    def test_operator_and_driver_coverage(self):
        report = validate_catalog(RuleCatalog([], default_catalog().drop_rules))
        assert "No operator rule found for excavator - equipment may not be operable" in report.warnings
        assert "Add driver rule for trucks" in report.suggestions
        assert report.is_valid

    def test_target_not_droppable_anywhere(self):
        base = default_catalog()
        drops = [d for d in base.drop_rules if d.row_type not in (R.TACK, R.MPT, R.TRUCKS)]
        report = validate_catalog(RuleCatalog(base.attachment_rules, drops))
        assert "Attachment rule targets truck but it is not allowed in any row" in report.warnings

    def test_error_carries_report(self):
        report = validate_catalog(_with([AttachmentRule(T.DRIVER, T.TRUCK)]))
        error = RuleCatalogError(report)
        assert error.report is report
        assert str(error) == "Duplicate rules found for driver -> truck"
