"""API infrastructure stack for the chat gateway.

Contains:
- Chat and conversation Lambda functions
- API Gateway REST API with CORS and Lambda proxy routes
"""
from aws_cdk import CfnOutput, Duration, Stack
from aws_cdk import aws_apigateway as apigw
from aws_cdk import aws_iam as iam
from aws_cdk import aws_lambda as lambda_
from constructs import Construct

from .base_stack import LAMBDAS_DIR, GatewayBaseStack


class GatewayApiStack(Stack):
    """API infrastructure stack with Lambda functions and API Gateway."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        environment: str,
        base_stack: GatewayBaseStack,
        model_provider: str = "claude",
        daily_budget_cap_minor_units: int = 1_000,
        **kwargs,
    ) -> None:
        """Initialize API stack.

        Args:
            scope: CDK scope
            construct_id: Stack identifier
            environment: Deployment environment (dev/prod)
            base_stack: Reference to base infrastructure stack
            model_provider: "claude" (Anthropic API) or "bedrock"
            daily_budget_cap_minor_units: Global daily spend cap
            **kwargs: Additional stack properties
        """
        super().__init__(scope, construct_id, **kwargs)

        self.deploy_env = environment
        self.prefix = f"chat-gateway-{environment}"
        self.base_stack = base_stack
        self.model_provider = model_provider
        self.daily_budget_cap_minor_units = daily_budget_cap_minor_units

        self.chat_function = self._create_chat_function()
        self.conversation_function = self._create_conversation_function()
        self.api = self._create_api()

        self._create_outputs()

    def _common_environment(self, service_name: str) -> dict[str, str]:
        return {
            "TABLE_NAME": self.base_stack.table.table_name,
            "ENVIRONMENT": self.deploy_env,
            "POWERTOOLS_SERVICE_NAME": service_name,
            "POWERTOOLS_METRICS_NAMESPACE": "ChatGateway",
            "POWERTOOLS_LOG_LEVEL": "INFO" if self.deploy_env == "prod" else "DEBUG",
            "TRUST_USER_ID_HEADER": "false" if self.deploy_env == "prod" else "true",
        }

    def _function(
        self,
        construct_id: str,
        name: str,
        handler: str,
        environment: dict[str, str],
        timeout: Duration,
    ) -> lambda_.Function:
        return lambda_.Function(
            self,
            construct_id,
            function_name=f"{self.prefix}-{name}",
            runtime=lambda_.Runtime.PYTHON_3_12,
            handler=handler,
            code=lambda_.Code.from_asset(
                LAMBDAS_DIR,
                exclude=["tests", "requirements.txt", "**/__pycache__"],
            ),
            layers=[self.base_stack.shared_layer],
            environment=environment,
            timeout=timeout,
            memory_size=512,
            tracing=lambda_.Tracing.ACTIVE,
        )

    def _create_chat_function(self) -> lambda_.Function:
        """Create the governed chat Lambda."""
        environment = {
            **self._common_environment("chat"),
            "MODEL_PROVIDER": self.model_provider,
            "ANTHROPIC_API_KEY_PARAM": self.base_stack.api_key_param_name,
            "BUDGET_ALERT_TOPIC_ARN": self.base_stack.alert_topic.topic_arn,
            "DAILY_BUDGET_CAP_MINOR_UNITS": str(self.daily_budget_cap_minor_units),
        }
        function = self._function(
            "ChatFunction",
            "chat",
            "chat.handler.lambda_handler",
            environment,
            Duration.seconds(60),
        )

        self.base_stack.table.grant_read_write_data(function)
        self.base_stack.alert_topic.grant_publish(function)
        function.add_to_role_policy(
            iam.PolicyStatement(
                actions=["ssm:GetParameter"],
                resources=[
                    self.format_arn(
                        service="ssm",
                        resource="parameter",
                        resource_name=self.base_stack.api_key_param_name.lstrip("/"),
                    )
                ],
            )
        )
        if self.model_provider == "bedrock":
            function.add_to_role_policy(
                iam.PolicyStatement(
                    actions=["bedrock:InvokeModel"],
                    resources=["*"],
                )
            )
        return function

    def _create_conversation_function(self) -> lambda_.Function:
        """Create the conversation CRUD Lambda."""
        function = self._function(
            "ConversationFunction",
            "conversation",
            "conversation.handler.lambda_handler",
            self._common_environment("conversation"),
            Duration.seconds(10),
        )
        self.base_stack.table.grant_read_write_data(function)
        return function

    def _create_api(self) -> apigw.RestApi:
        """Create API Gateway REST API with CORS configuration."""
        cors_origins = (
            ["https://mtg.example.com"]
            if self.deploy_env == "prod"
            else apigw.Cors.ALL_ORIGINS
        )

        api = apigw.RestApi(
            self,
            "Api",
            rest_api_name=f"{self.prefix}-api",
            description="Governed MTG assistant chat API",
            deploy_options=apigw.StageOptions(
                stage_name=self.deploy_env,
                throttling_rate_limit=100,
                throttling_burst_limit=200,
            ),
            default_cors_preflight_options=apigw.CorsOptions(
                allow_origins=cors_origins,
                allow_methods=apigw.Cors.ALL_METHODS,
                allow_headers=[
                    "Content-Type",
                    "Authorization",
                    "X-User-Id",
                ],
            ),
        )

        chat_integration = apigw.LambdaIntegration(self.chat_function)
        conversation_integration = apigw.LambdaIntegration(self.conversation_function)

        # /chat
        chat = api.root.add_resource("chat")
        chat.add_method("POST", chat_integration)

        # /chat/history, /chat/stats
        chat.add_resource("history").add_method("GET", chat_integration)
        chat.add_resource("stats").add_method("GET", chat_integration)

        # /conversations
        conversations = api.root.add_resource("conversations")
        conversations.add_method("GET", conversation_integration)
        conversations.add_method("POST", conversation_integration)

        # /conversations/{conversation_id}
        conversation = conversations.add_resource("{conversation_id}")
        conversation.add_method("GET", conversation_integration)
        conversation.add_method("PATCH", conversation_integration)
        conversation.add_method("DELETE", conversation_integration)

        # /conversations/{conversation_id}/summarize-and-continue
        conversation.add_resource("summarize-and-continue").add_method(
            "POST", chat_integration
        )

        return api

    def _create_outputs(self) -> None:
        """Create CloudFormation outputs."""
        CfnOutput(
            self,
            "ApiUrl",
            value=self.api.url,
            description="API Gateway URL",
            export_name=f"{self.prefix}-api-url",
        )

        CfnOutput(
            self,
            "ApiId",
            value=self.api.rest_api_id,
            description="API Gateway ID",
            export_name=f"{self.prefix}-api-id",
        )
