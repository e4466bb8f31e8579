from agentcore.services.result import Result


class TestResultSuccess:
    def test_success_creates_ok_result(self):
        result = Result.success("test value")
        assert result.ok is True
        assert result.value == "test value"
        assert result.error is None

    def test_success_keeps_details(self):
        result = Result.success({"code": "AUTO1"}, source="rule")
        assert result.details == {"source": "rule"}


class TestResultFailure:
    def test_failure_creates_not_ok_result(self):
        result = Result.failure("Something went wrong", "test_error")
        assert result.ok is False
        assert result.error == "Something went wrong"
        assert result.error_code == "test_error"
        assert result.value is None

    def test_failure_default_code(self):
        result = Result.failure("Error message")
        assert result.error_code == "unknown"

    def test_from_exception(self):
        result = Result.from_exception(RuntimeError("boom"))
        assert result.ok is False
        assert result.error == "boom"
        assert result.error_code == "exception"

    def test_from_exception_without_message_uses_class_name(self):
        result = Result.from_exception(KeyError())
        assert result.error == "KeyError"


class TestResultUnwrapOr:
    def test_unwrap_or_returns_value_on_success(self):
        assert Result.success("actual value").unwrap_or("default") == "actual value"

    def test_unwrap_or_returns_default_on_failure(self):
        assert Result.failure("Error", "code").unwrap_or("default") == "default"
