"""Base infrastructure stack for the chat gateway.

Contains:
- DynamoDB table with single-table design and TTL
- SNS topic for budget threshold alerts
- Lambda layer with third-party dependencies and shared code
"""
from pathlib import Path

from aws_cdk import CfnOutput, RemovalPolicy, Stack
from aws_cdk import aws_dynamodb as dynamodb
from aws_cdk import aws_lambda as lambda_
from aws_cdk import aws_sns as sns
from constructs import Construct

LAMBDAS_DIR = str(Path(__file__).resolve().parents[2] / "lambdas")


class GatewayBaseStack(Stack):
    """Base infrastructure stack with DynamoDB, alerting, and Lambda layer."""

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        environment: str = "dev",
        **kwargs,
    ) -> None:
        """Initialize base stack.

        Args:
            scope: CDK scope
            construct_id: Stack identifier
            environment: Deployment environment (dev/prod)
            **kwargs: Additional stack properties
        """
        super().__init__(scope, construct_id, **kwargs)

        self.deploy_env = environment
        self.prefix = f"chat-gateway-{environment}"
        # SecureString parameters cannot be created by CloudFormation;
        # the key is put into SSM out of band
        self.api_key_param_name = f"/chat-gateway/{environment}/secrets/anthropic_api_key"

        self.table = self._create_table()
        self.alert_topic = self._create_alert_topic()
        self.shared_layer = self._create_lambda_layer()

        self._create_outputs()

    def _create_table(self) -> dynamodb.Table:
        """Create the table holding counters, ledger, usage and conversations."""
        return dynamodb.Table(
            self,
            "MainTable",
            table_name=f"{self.prefix}-main",
            partition_key=dynamodb.Attribute(
                name="PK",
                type=dynamodb.AttributeType.STRING,
            ),
            sort_key=dynamodb.Attribute(
                name="SK",
                type=dynamodb.AttributeType.STRING,
            ),
            billing_mode=dynamodb.BillingMode.PAY_PER_REQUEST,
            time_to_live_attribute="ttl",
            removal_policy=(
                RemovalPolicy.RETAIN
                if self.deploy_env == "prod"
                else RemovalPolicy.DESTROY
            ),
            point_in_time_recovery=self.deploy_env == "prod",
        )

    def _create_alert_topic(self) -> sns.Topic:
        """Create SNS topic for daily budget threshold alerts."""
        return sns.Topic(
            self,
            "BudgetAlertTopic",
            topic_name=f"{self.prefix}-budget-alerts",
            display_name="Chat gateway budget alerts",
        )

    def _create_lambda_layer(self) -> lambda_.LayerVersion:
        """Create Lambda layer with dependencies and the shared package."""
        return lambda_.LayerVersion(
            self,
            "SharedLayer",
            layer_version_name=f"{self.prefix}-shared",
            code=lambda_.Code.from_asset(
                LAMBDAS_DIR,
                bundling={
                    "image": lambda_.Runtime.PYTHON_3_12.bundling_image,
                    "command": [
                        "bash",
                        "-c",
                        "pip install -r requirements.txt -t /asset-output/python "
                        "&& cp -r shared /asset-output/python/",
                    ],
                },
            ),
            compatible_runtimes=[lambda_.Runtime.PYTHON_3_12],
            description="Dependencies and shared governance code for the chat gateway",
        )

    def _create_outputs(self) -> None:
        """Create CloudFormation outputs."""
        CfnOutput(
            self,
            "TableName",
            value=self.table.table_name,
            description="DynamoDB table name",
            export_name=f"{self.prefix}-table-name",
        )

        CfnOutput(
            self,
            "TableArn",
            value=self.table.table_arn,
            description="DynamoDB table ARN",
            export_name=f"{self.prefix}-table-arn",
        )

        CfnOutput(
            self,
            "BudgetAlertTopicArn",
            value=self.alert_topic.topic_arn,
            description="Budget alert SNS topic ARN",
            export_name=f"{self.prefix}-budget-alert-topic-arn",
        )

        CfnOutput(
            self,
            "SharedLayerArn",
            value=self.shared_layer.layer_version_arn,
            description="Shared Lambda layer ARN",
            export_name=f"{self.prefix}-shared-layer-arn",
        )
