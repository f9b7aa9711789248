"""
Listener rule actions.

A rule carries at most one pre-routing action (authentication) followed by
exactly one routing action: fixed-response, forward or redirect.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from gwmodel.builders.common import collaborator_call
from gwmodel.exceptions import ConfigurationError
from gwmodel.inputs.configuration import (
    AuthenticateCognitoConfig,
    AuthenticateOidcConfig,
    FixedResponseConfig,
    ForwardConfig,
    RedirectConfig,
    RuleAction,
)
from gwmodel.inputs.routes import RequestRedirectFilter
from gwmodel.model.elbv2 import (
    Action,
    ActionType,
    AuthenticateCognitoActionConfig,
    AuthenticateOIDCActionConfig,
    FixedResponseActionConfig,
    ForwardActionConfig,
    RedirectActionConfig,
    TargetGroupStickinessConfig,
    TargetGroupTuple,
)
from gwmodel.protocols import SecretsManager

logger = logging.getLogger(__name__)

CONTENT_TYPE_TEXT_PLAIN = "text/plain"
DEFAULT_REDIRECT_STATUS_CODE = 302

OIDC_SECRET_KEY_CLIENT_ID = "clientID"
OIDC_SECRET_KEY_CLIENT_ID_LEGACY = "clientId"
OIDC_SECRET_KEY_CLIENT_SECRET = "clientSecret"

_CONTROL_CHARS = "".join(chr(c) for c in range(32)) + "\x7f"
_REDIRECT_SCHEMES = ("HTTP", "HTTPS")


def fixed_response_action(
    status_code: int | str,
    content_type: Optional[str] = CONTENT_TYPE_TEXT_PLAIN,
    message_body: Optional[str] = None,
) -> Action:
    return Action(
        type=ActionType.FIXED_RESPONSE,
        fixed_response_config=FixedResponseActionConfig(
            status_code=str(status_code),
            content_type=content_type,
            message_body=message_body,
        ),
    )


def listener_default_actions() -> list[Action]:
    """L7 listeners answer 404 for anything no rule matched."""
    return [fixed_response_action(404)]


def no_backend_actions() -> list[Action]:
    return [fixed_response_action(503)]


def should_forward(tuples: Sequence[TargetGroupTuple]) -> bool:
    """True when at least one target group would receive traffic."""
    return any(t.weight is None or t.weight != 0 for t in tuples)


def forward_action(
    tuples: Sequence[TargetGroupTuple], forward_config: Optional[ForwardConfig]
) -> Action:
    stickiness = None
    if forward_config is not None:
        configured = forward_config.target_group_stickiness_config
        stickiness = TargetGroupStickinessConfig(
            enabled=configured.enabled,
            duration_seconds=configured.duration_seconds,
        )
    return Action(
        type=ActionType.FORWARD,
        forward_config=ForwardActionConfig(
            target_groups=list(tuples),
            target_group_stickiness_config=stickiness,
        ),
    )


def fixed_response_from_config(config: FixedResponseConfig) -> Action:
    return fixed_response_action(
        config.status_code,
        content_type=config.content_type,
        message_body=config.message_body,
    )


def redirect_action(
    redirect: RequestRedirectFilter, redirect_config: Optional[RedirectConfig]
) -> Action:
    """
    Translate a RequestRedirect filter into a redirect action.

    Raises:
        ConfigurationError: If the redirect would loop or uses an unsupported
            scheme or a wildcard path
    """
    component_specified = False

    port = None
    if redirect.port is not None:
        port = str(redirect.port)
        component_specified = True

    protocol = None
    if redirect.scheme is not None:
        protocol = redirect.scheme.upper()
        if protocol not in _REDIRECT_SCHEMES:
            raise ConfigurationError(f"unsupported redirect scheme: {protocol}")
        component_specified = True

    path = None
    if redirect.path is not None:
        value = redirect.path.value
        if "*" in value or "?" in value:
            raise ConfigurationError(
                f"{redirect.path.type} shouldn't contain wildcards: {value}"
            )
        path = value if redirect.path.type == "ReplaceFullPath" else f"{value}/*"
        component_specified = True

    if redirect.hostname is not None:
        component_specified = True

    if not component_specified:
        raise ConfigurationError(
            "To avoid a redirect loop, you must modify at least one of the "
            "following components: protocol, port, hostname or path."
        )

    status_code = redirect.status_code or DEFAULT_REDIRECT_STATUS_CODE
    return Action(
        type=ActionType.REDIRECT,
        redirect_config=RedirectActionConfig(
            host=redirect.hostname,
            path=path,
            port=port,
            protocol=protocol,
            query=redirect_config.query if redirect_config else None,
            status_code=f"HTTP_{status_code}",
        ),
    )


def build_routing_action(
    routing_action: Optional[RuleAction],
    redirect: Optional[RequestRedirectFilter],
    tuples: Sequence[TargetGroupTuple],
) -> Optional[Action]:
    """
    Choose the routing action of one rule.

    An explicit fixed-response wins. Otherwise a redirect filter overrides
    forwarding to the rule's target groups. None means the rule has nothing
    to route to.
    """
    if routing_action is not None and routing_action.type == ActionType.FIXED_RESPONSE:
        return fixed_response_from_config(routing_action.fixed_response_config)

    redirect_config = routing_action.redirect_config if routing_action else None
    if redirect is not None:
        return redirect_action(redirect, redirect_config)
    if routing_action is not None and routing_action.type == ActionType.REDIRECT:
        raise ConfigurationError(
            "HTTPRouteFilterRequestRedirect must be provided if RedirectActionConfig "
            "in ListenerRuleConfiguration is provided"
        )

    if should_forward(tuples):
        forward_config = routing_action.forward_config if routing_action else None
        return forward_action(tuples, forward_config)
    return None


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------


def cognito_action(config: AuthenticateCognitoConfig) -> Action:
    return Action(
        type=ActionType.AUTHENTICATE_COGNITO,
        authenticate_cognito_config=AuthenticateCognitoActionConfig(
            user_pool_arn=config.user_pool_arn,
            user_pool_client_id=config.user_pool_client_id,
            user_pool_domain=config.user_pool_domain,
            authentication_request_extra_params=dict(
                config.authentication_request_extra_params
            ),
            on_unauthenticated_request=config.on_unauthenticated_request,
            scope=config.scope,
            session_cookie_name=config.session_cookie_name,
            session_timeout=config.session_timeout,
        ),
    )


def oidc_action(
    config: AuthenticateOidcConfig,
    route_namespace: str,
    secrets_manager: SecretsManager,
) -> tuple[Action, tuple[str, str]]:
    """
    Build an authenticate-oidc action from the client credentials Secret.

    Returns:
        The action and the ``(namespace, name)`` of the Secret it read

    Raises:
        ConfigurationError: If the Secret lacks the client id or secret
    """
    secret_key = (config.secret.namespace or route_namespace, config.secret.name)
    with collaborator_call(f"failed to read secret {secret_key[0]}/{secret_key[1]}"):
        data = secrets_manager.get_secret(*secret_key)

    raw_client_id = data.get(OIDC_SECRET_KEY_CLIENT_ID)
    if raw_client_id is None:
        raw_client_id = data.get(OIDC_SECRET_KEY_CLIENT_ID_LEGACY)
    if raw_client_id is None:
        raise ConfigurationError(
            f"missing clientID, secret: {secret_key[0]}/{secret_key[1]}"
        )
    raw_client_secret = data.get(OIDC_SECRET_KEY_CLIENT_SECRET)
    if raw_client_secret is None:
        raise ConfigurationError(
            f"missing clientSecret, secret: {secret_key[0]}/{secret_key[1]}"
        )

    action = Action(
        type=ActionType.AUTHENTICATE_OIDC,
        authenticate_oidc_config=AuthenticateOIDCActionConfig(
            issuer=config.issuer,
            authorization_endpoint=config.authorization_endpoint,
            token_endpoint=config.token_endpoint,
            user_info_endpoint=config.user_info_endpoint,
            client_id=raw_client_id.rstrip(),
            client_secret=raw_client_secret.rstrip(_CONTROL_CHARS),
            authentication_request_extra_params=dict(
                config.authentication_request_extra_params
            ),
            on_unauthenticated_request=config.on_unauthenticated_request,
            scope=config.scope,
            session_cookie_name=config.session_cookie_name,
            session_timeout=config.session_timeout,
        ),
    )
    return action, secret_key


def build_pre_routing_action(
    action: RuleAction, route_namespace: str, secrets_manager: SecretsManager
) -> tuple[Action, Optional[tuple[str, str]]]:
    match action.type:
        case ActionType.AUTHENTICATE_COGNITO:
            return cognito_action(action.authenticate_cognito_config), None
        case ActionType.AUTHENTICATE_OIDC:
            return oidc_action(
                action.authenticate_oidc_config, route_namespace, secrets_manager
            )
        case _:
            raise ConfigurationError(f"unsupported action type {action.type.value}")
