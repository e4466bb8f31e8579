import pytest

from agentcore.models import BusinessRule
from agentcore.services.rule_definitions import (
    ApplyDiscount,
    DirectResponse,
    Escalate,
    NumericRange,
    RuleDecodeError,
    RuleFacts,
    SegmentEquals,
    Trigger,
    decode_actions,
    decode_conditions,
    decode_rule,
)


def facts(**overrides):
    values = {"intent": "other", "text": "", "message_count": 1, "is_first_message": True}
    values.update(overrides)
    return RuleFacts(**values)


class TestTrigger:
    def test_keywords_match_whole_words_only(self):
        trigger = Trigger(keywords=["lote"])
        assert trigger.matches(facts(text="Quiero comprar un lote grande"))
        assert not trigger.matches(facts(text="Estoy en el lotería"))

    def test_keywords_are_case_insensitive(self):
        assert Trigger(keywords=["urgente"]).matched_keyword("ES URGENTE, ayuda") == "urgente"

    def test_multi_word_keyword(self):
        assert Trigger(keywords=["hasta luego"]).matches(facts(text="Gracias, hasta luego!"))

    def test_intents_and_keywords_both_required(self):
        trigger = Trigger(intents=["goodbye"], keywords=["gracias"])
        assert trigger.matches(facts(intent="goodbye", text="muchas gracias"))
        assert not trigger.matches(facts(intent="greeting", text="muchas gracias"))
        assert not trigger.matches(facts(intent="goodbye", text="bye"))

    def test_first_message_flag(self):
        trigger = Trigger.model_validate({"intents": ["greeting"], "isFirstMessage": True})
        assert trigger.matches(facts(intent="greeting", is_first_message=True))
        assert not trigger.matches(facts(intent="greeting", is_first_message=False))

    def test_empty_trigger_matches_everything(self):
        assert Trigger().matches(facts(text="cualquier cosa"))


class TestConditions:
    def test_decode_conditions(self):
        conditions = decode_conditions({"customerSegment": "vip", "totalOrders": {"min": 1}})
        assert conditions == [SegmentEquals("vip"), NumericRange("total_orders", 1, None)]

    def test_numeric_range_bounds(self):
        condition = NumericRange("days_since_last_order", 90, 365)
        assert condition.holds(facts(days_since_last_order=90))
        assert not condition.holds(facts(days_since_last_order=30))
        assert not condition.holds(facts(days_since_last_order=400))

    def test_missing_value_never_holds(self):
        assert not NumericRange("days_since_last_order", 90).holds(facts(days_since_last_order=None))

    def test_unknown_condition_rejected(self):
        with pytest.raises(RuleDecodeError):
            decode_conditions({"productStock": {"max": 5}}, "Low stock")

    def test_range_must_be_object(self):
        with pytest.raises(RuleDecodeError):
            decode_conditions({"totalOrders": 3})


class TestActions:
    def test_single_action_document(self):
        actions = decode_actions({"type": "direct_response", "message": "Hola", "nextSteps": ["a"]})
        assert isinstance(actions[0], DirectResponse)
        assert actions[0].next_steps == ["a"]

    def test_action_list(self):
        actions = decode_actions(
            [
                {"type": "escalate", "reason": "VIP"},
                {"type": "apply_discount", "discount": {"type": "percentage", "percentage": 5}},
            ]
        )
        assert isinstance(actions[0], Escalate)
        assert isinstance(actions[1], ApplyDiscount)

    def test_discount_message_placeholder(self):
        action = decode_actions(
            {"type": "apply_discount", "discount": {"percentage": 15}, "message": "Tienes {discount} de descuento"}
        )[0]
        assert action.render_message() == "Tienes 15% de descuento"

    def test_unknown_action_type(self):
        with pytest.raises(RuleDecodeError):
            decode_actions({"type": "send_email"})

    def test_empty_actions(self):
        with pytest.raises(RuleDecodeError):
            decode_actions([])


class TestDecodeRule:
    def test_decode_rule_row(self):
        row = BusinessRule(
            id=3,
            name="VIP discount",
            category="discount",
            priority=70,
            version=2,
            trigger={"intents": ["price_request"]},
            conditions={"customerSegment": "vip"},
            actions={"type": "apply_discount", "discount": {"type": "percentage", "percentage": 15}},
        )
        rule = decode_rule(row)

        assert rule.id == 3
        assert rule.version == 2
        assert rule.applies_to(facts(intent="price_request", segment="vip"))
        assert not rule.applies_to(facts(intent="price_request", segment="new"))
        assert isinstance(rule.primary_action, ApplyDiscount)
