"""Unit tests for listener rule actions."""

from __future__ import annotations

import pytest

from gwmodel.builders.actions import (
    build_pre_routing_action,
    build_routing_action,
    listener_default_actions,
    no_backend_actions,
    redirect_action,
    should_forward,
)
from gwmodel.core.stack import literal
from gwmodel.exceptions import CollaboratorError, ConfigurationError
from gwmodel.inputs.configuration import RedirectConfig, RuleAction
from gwmodel.inputs.routes import PathModifier, RequestRedirectFilter
from gwmodel.model.elbv2 import ActionType, TargetGroupTuple


class _Secrets:
    def __init__(self, secrets: dict[tuple[str, str], dict[str, str]] | None = None):
        self.secrets = secrets or {}

    def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        return self.secrets[(namespace, name)]


TG_A = TargetGroupTuple(target_group_arn=literal("arn:a"), weight=1)
TG_B = TargetGroupTuple(target_group_arn=literal("arn:b"), weight=3)

OIDC_ACTION = {
    "type": "authenticate-oidc",
    "authenticateOIDCConfig": {
        "authorizationEndpoint": "https://idp/auth",
        "issuer": "https://idp",
        "tokenEndpoint": "https://idp/token",
        "userInfoEndpoint": "https://idp/userinfo",
        "secret": {"name": "oidc"},
    },
}


def test_default_actions() -> None:
    (default,) = listener_default_actions()
    assert default.fixed_response_config.status_code == "404"
    assert default.fixed_response_config.content_type == "text/plain"
    (fallback,) = no_backend_actions()
    assert fallback.fixed_response_config.status_code == "503"


# -------------------- Redirects --------------------


class TestRedirect:
    def test_redirect_without_changes_is_a_loop(self) -> None:
        with pytest.raises(ConfigurationError, match="redirect loop"):
            redirect_action(RequestRedirectFilter(), None)

    def test_default_status_code(self) -> None:
        action = redirect_action(RequestRedirectFilter(hostname="example.com"), None)
        assert action.type == ActionType.REDIRECT
        assert action.redirect_config.host == "example.com"
        assert action.redirect_config.status_code == "HTTP_302"

    def test_scheme_port_and_query(self) -> None:
        action = redirect_action(
            RequestRedirectFilter(scheme="https", port=443, status_code=301),
            RedirectConfig(query="a=b"),
        )
        config = action.redirect_config
        assert (config.protocol, config.port, config.query) == ("HTTPS", "443", "a=b")
        assert config.status_code == "HTTP_301"

    def test_unsupported_scheme(self) -> None:
        with pytest.raises(ConfigurationError, match="unsupported redirect scheme"):
            redirect_action(RequestRedirectFilter(scheme="ftp"), None)

    @pytest.mark.parametrize(
        "modifier, expected",
        [("ReplaceFullPath", "/new"), ("ReplacePrefixMatch", "/new/*")],
    )
    def test_path_modifiers(self, modifier: str, expected: str) -> None:
        action = redirect_action(
            RequestRedirectFilter(path=PathModifier(type=modifier, value="/new")), None
        )
        assert action.redirect_config.path == expected

    @pytest.mark.parametrize("value", ["/a*", "/a?b"])
    def test_wildcard_paths_rejected(self, value: str) -> None:
        redirect = RequestRedirectFilter(
            path=PathModifier(type="ReplaceFullPath", value=value)
        )
        with pytest.raises(ConfigurationError, match="shouldn't contain wildcards"):
            redirect_action(redirect, None)


# -------------------- Routing action --------------------


class TestRoutingAction:
    def test_forward_keeps_weights(self) -> None:
        action = build_routing_action(None, None, [TG_A, TG_B])
        assert action.type == ActionType.FORWARD
        assert [t.weight for t in action.forward_config.target_groups] == [1, 3]
        assert action.forward_config.target_group_stickiness_config is None

    def test_forward_with_stickiness(self) -> None:
        routing = RuleAction.model_validate(
            {
                "type": "forward",
                "forwardConfig": {
                    "targetGroupStickinessConfig": {
                        "enabled": True,
                        "durationSeconds": 60,
                    }
                },
            }
        )
        action = build_routing_action(routing, None, [TG_A])
        stickiness = action.forward_config.target_group_stickiness_config
        assert (stickiness.enabled, stickiness.duration_seconds) == (True, 60)

    def test_zero_weights_mean_nothing_to_route(self) -> None:
        zero = TargetGroupTuple(target_group_arn=literal("arn:z"), weight=0)
        assert should_forward([zero]) is False
        assert should_forward([]) is False
        assert build_routing_action(None, None, [zero]) is None

    def test_fixed_response_wins(self) -> None:
        routing = RuleAction.model_validate(
            {
                "type": "fixed-response",
                "fixedResponseConfig": {"statusCode": 418, "messageBody": "teapot"},
            }
        )
        action = build_routing_action(
            routing, RequestRedirectFilter(hostname="x"), [TG_A]
        )
        assert action.type == ActionType.FIXED_RESPONSE
        assert action.fixed_response_config.status_code == "418"
        assert action.fixed_response_config.message_body == "teapot"

    def test_redirect_filter_overrides_forward(self) -> None:
        action = build_routing_action(
            None, RequestRedirectFilter(scheme="HTTPS"), [TG_A]
        )
        assert action.type == ActionType.REDIRECT

    def test_redirect_config_needs_filter(self) -> None:
        routing = RuleAction(type=ActionType.REDIRECT)
        with pytest.raises(ConfigurationError, match="must be provided"):
            build_routing_action(routing, None, [TG_A])


# -------------------- Authentication --------------------


class TestPreRoutingAction:
    def test_cognito(self) -> None:
        action = RuleAction.model_validate(
            {
                "type": "authenticate-cognito",
                "authenticateCognitoConfig": {
                    "userPoolArn": "arn:pool",
                    "userPoolClientId": "client",
                    "userPoolDomain": "auth.example.com",
                },
            }
        )
        built, secret = build_pre_routing_action(action, "web", _Secrets())
        assert secret is None
        assert built.authenticate_cognito_config.user_pool_arn == "arn:pool"
        assert built.authenticate_cognito_config.on_unauthenticated_request == (
            "authenticate"
        )

    def test_oidc_reads_client_credentials(self) -> None:
        secrets = _Secrets(
            {("web", "oidc"): {"clientID": "id \n", "clientSecret": "s3cret\r\n"}}
        )
        built, secret = build_pre_routing_action(
            RuleAction.model_validate(OIDC_ACTION), "web", secrets
        )
        assert secret == ("web", "oidc")
        config = built.authenticate_oidc_config
        assert (config.client_id, config.client_secret) == ("id", "s3cret")

    def test_oidc_accepts_legacy_client_id_key(self) -> None:
        secrets = _Secrets(
            {("web", "oidc"): {"clientId": "legacy", "clientSecret": "s"}}
        )
        built, _ = build_pre_routing_action(
            RuleAction.model_validate(OIDC_ACTION), "web", secrets
        )
        assert built.authenticate_oidc_config.client_id == "legacy"

    def test_oidc_secret_namespace_override(self) -> None:
        spec = {
            **OIDC_ACTION,
            "authenticateOIDCConfig": {
                **OIDC_ACTION["authenticateOIDCConfig"],
                "secret": {"name": "oidc", "namespace": "auth"},
            },
        }
        secrets = _Secrets(
            {("auth", "oidc"): {"clientID": "id", "clientSecret": "s"}}
        )
        _, secret = build_pre_routing_action(
            RuleAction.model_validate(spec), "web", secrets
        )
        assert secret == ("auth", "oidc")

    @pytest.mark.parametrize(
        "data, missing",
        [({"clientSecret": "s"}, "clientID"), ({"clientID": "id"}, "clientSecret")],
    )
    def test_oidc_missing_keys(self, data: dict[str, str], missing: str) -> None:
        secrets = _Secrets({("web", "oidc"): data})
        with pytest.raises(ConfigurationError, match=f"missing {missing}"):
            build_pre_routing_action(
                RuleAction.model_validate(OIDC_ACTION), "web", secrets
            )

    def test_oidc_missing_secret(self) -> None:
        with pytest.raises(CollaboratorError, match="failed to read secret web/oidc"):
            build_pre_routing_action(
                RuleAction.model_validate(OIDC_ACTION), "web", _Secrets()
            )

    def test_routing_action_is_not_pre_routing(self) -> None:
        with pytest.raises(ConfigurationError, match="unsupported action type"):
            build_pre_routing_action(
                RuleAction(type=ActionType.FORWARD), "web", _Secrets()
            )
