"""Tests for install/build error classification."""

import pytest

from core.analyze_errors import CATEGORY_PRIORITIES, ErrorAnalyzer
from core.models import ErrorCategory


class TestCategorize:
    """Test single-message categorization."""

    def setup_method(self):
        self.analyzer = ErrorAnalyzer()

    @pytest.mark.parametrize(
        "message,category",
        [
            ("Cannot find module 'lodash'", ErrorCategory.DEPENDENCY_NOT_FOUND),
            ("npm ERR! 404 Not Found - GET https://registry.npmjs.org/nope", ErrorCategory.DEPENDENCY_NOT_FOUND),
            ("npm ERR! ERESOLVE unable to resolve dependency tree", ErrorCategory.DEPENDENCY_VERSION_CONFLICT),
            ('npm ERR! peer react@"^17.0.0" from react-dom@17.0.2', ErrorCategory.PEER_DEPENDENCY_CONFLICT),
            ("gyp ERR! build error", ErrorCategory.NATIVE_MODULE_FAILURE),
            ("npm ERR! code EINTEGRITY", ErrorCategory.LOCKFILE_CONFLICT),
            ("npm ERR! git dep preparation failed", ErrorCategory.GIT_DEPENDENCY_FAILURE),
            ("SyntaxError: Unexpected token '?'", ErrorCategory.SYNTAX_ERROR),
            ("src/app.ts(3,5): error TS2322: Type 'string' is not assignable", ErrorCategory.TYPE_ERROR),
            ("something odd happened", ErrorCategory.UNKNOWN),
        ],
    )
    def test_categories(self, message, category):
        assert self.analyzer.categorize(message) == category


class TestAnalyze:
    """Test full output analysis."""

    def setup_method(self):
        self.analyzer = ErrorAnalyzer()

    def test_module_not_found_extracts_scoped_package(self):
        errors = self.analyzer.analyze("Error: Cannot find module '@babel/core/lib/index'")

        assert errors[0].category == ErrorCategory.DEPENDENCY_NOT_FOUND
        assert errors[0].package_name == "@babel/core"
        assert errors[0].error_pattern == "dependency_not_found:@babel/core"

    def test_relative_module_has_no_package(self):
        errors = self.analyzer.analyze("Error: Cannot find module './config'")

        assert errors[0].package_name is None

    def test_peer_dependency_details(self):
        output = 'npm ERR! peer react@"^17.0.0" from react-dom@17.0.2'

        error = self.analyzer.analyze(output)[0]

        assert error.category == ErrorCategory.PEER_DEPENDENCY_CONFLICT
        assert error.package_name == "react"
        assert error.version_constraint == "^17.0.0"
        assert error.conflicting_packages == ["react-dom@17.0.2"]

    def test_native_module_package(self):
        error = self.analyzer.analyze("gyp ERR! build error: node-gyp rebuild failed for bcrypt")[0]

        assert error.category == ErrorCategory.NATIVE_MODULE_FAILURE
        assert error.package_name == "bcrypt"

    def test_git_dependency_package(self):
        output = "npm ERR! Could not resolve git dependency https://github.com/user/my-lib.git#main"

        error = self.analyzer.analyze(output)[0]

        assert error.category == ErrorCategory.GIT_DEPENDENCY_FAILURE
        assert error.package_name == "my-lib"

    def test_duplicates_collapse(self):
        output = "Cannot find module 'lodash'\nError: Cannot find module 'lodash'"

        errors = self.analyzer.analyze(output)

        assert len(errors) == 1

    def test_sorted_by_priority(self):
        output = "\n".join(
            [
                "SyntaxError: Unexpected token",
                "Cannot find module 'lodash'",
                "npm ERR! code EINTEGRITY lockfile integrity mismatch",
            ]
        )

        errors = self.analyzer.analyze(output)

        assert errors[0].category == ErrorCategory.LOCKFILE_CONFLICT
        priorities = [error.priority for error in errors]
        assert priorities == sorted(priorities, reverse=True)

    def test_noise_is_dropped(self):
        assert self.analyzer.analyze("npm WARN deprecated request@2.88.2") == []

    def test_empty_output(self):
        assert self.analyzer.analyze("") == []

    def test_unstructured_output_is_one_message(self):
        errors = self.analyzer.analyze("it broke\nbadly")

        assert len(errors) == 1
        assert errors[0].category == ErrorCategory.UNKNOWN
        assert errors[0].priority == CATEGORY_PRIORITIES[ErrorCategory.UNKNOWN]
