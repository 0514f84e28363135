import os

from aws_cdk import (
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    aws_apigateway as apigw,
    aws_cognito as cognito,
    aws_dynamodb as ddb,
    aws_iam as iam,
    aws_lambda as _lambda,
    aws_logs as logs,
    aws_secretsmanager as secretsmanager,
)
from constructs import Construct


class MiniTrelloStack(Stack):
    def __init__(self, scope: Construct, construct_id: str, **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        stage_name = os.getenv("STAGE", "prod")
        data_retention_mode = os.getenv("DATA_RETENTION_MODE", "destroy").strip().lower()
        if data_retention_mode not in {"destroy", "retain"}:
            raise ValueError(
                "DATA_RETENTION_MODE must be 'destroy' or 'retain' (case-insensitive)"
            )
        # Dev-first default: delete stateful resources on teardown.
        # For production deployments, set DATA_RETENTION_MODE=retain.
        stateful_removal_policy = (
            RemovalPolicy.DESTROY
            if data_retention_mode == "destroy"
            else RemovalPolicy.RETAIN
        )
        schema_version = "2026-10-01"
        app_env = os.getenv("APP_ENV", "production").strip().lower()
        name_prefix = f"{construct_id}-{stage_name}"

        def _table(construct_name: str, pk: str = "id", **extra) -> ddb.Table:
            return ddb.Table(
                self,
                construct_name,
                partition_key=ddb.Attribute(name=pk, type=ddb.AttributeType.STRING),
                billing_mode=ddb.BillingMode.PAY_PER_REQUEST,
                point_in_time_recovery=True,
                removal_policy=stateful_removal_policy,
                **extra,
            )

        def _string_index(table: ddb.Table, field: str, index_name: str, sort_key: ddb.Attribute | None = None) -> None:
            table.add_global_secondary_index(
                index_name=index_name,
                partition_key=ddb.Attribute(name=field, type=ddb.AttributeType.STRING),
                sort_key=sort_key,
                projection_type=ddb.ProjectionType.ALL,
            )

        users_table = _table("Users")
        _string_index(users_table, "email", "email-index")

        boards_table = _table("Boards")

        cards_table = _table("Cards")
        _string_index(
            cards_table,
            "boardId",
            "boardId-createdAt-index",
            sort_key=ddb.Attribute(name="createdAt", type=ddb.AttributeType.STRING),
        )

        tasks_table = _table("Tasks")
        _string_index(
            tasks_table,
            "cardId",
            "cardId-order-index",
            sort_key=ddb.Attribute(name="order", type=ddb.AttributeType.NUMBER),
        )
        _string_index(tasks_table, "boardId", "boardId-index")

        invitations_table = _table("Invitations")
        _string_index(invitations_table, "memberId", "memberId-index")
        _string_index(invitations_table, "boardId", "boardId-index")

        attachments_table = _table("GitHubAttachments")
        _string_index(attachments_table, "taskId", "taskId-index")

        verification_codes_table = _table(
            "VerificationCodes",
            pk="email",
            time_to_live_attribute="expiresAtEpoch",
        )

        all_tables = [
            users_table,
            boards_table,
            cards_table,
            tasks_table,
            invitations_table,
            attachments_table,
            verification_codes_table,
        ]

        user_pool = cognito.UserPool(
            self,
            "MiniTrelloUserPool",
            user_pool_name=f"{name_prefix}-users",
            self_sign_up_enabled=False,
            sign_in_aliases=cognito.SignInAliases(username=True, email=True),
            removal_policy=stateful_removal_policy,
        )
        user_pool_client = user_pool.add_client(
            "MiniTrelloUserPoolClient",
            auth_flows=cognito.AuthFlow(user_srp=True),
            generate_secret=False,
        )

        jwt_secret = secretsmanager.Secret(
            self,
            "SessionJwtSecret",
            generate_secret_string=secretsmanager.SecretStringGenerator(
                password_length=48,
                exclude_punctuation=True,
                include_space=False,
            ),
            removal_policy=stateful_removal_policy,
        )

        common_env = {
            "USERS_TABLE": users_table.table_name,
            "BOARDS_TABLE": boards_table.table_name,
            "CARDS_TABLE": cards_table.table_name,
            "TASKS_TABLE": tasks_table.table_name,
            "INVITATIONS_TABLE": invitations_table.table_name,
            "GITHUB_ATTACHMENTS_TABLE": attachments_table.table_name,
            "VERIFICATION_CODES_TABLE": verification_codes_table.table_name,
            "SCHEMA_VERSION": schema_version,
            "APP_ENV": app_env,
            "USER_POOL_ID": user_pool.user_pool_id,
            "JWT_SECRET": jwt_secret.secret_value.unsafe_unwrap(),
            "JWT_EXPIRES_IN": os.getenv("JWT_EXPIRES_IN", "7d"),
        }

        def _function(construct_name: str, handler: str, extra_env: dict | None = None) -> _lambda.Function:
            fn = _lambda.Function(
                self,
                construct_name,
                runtime=_lambda.Runtime.PYTHON_3_12,
                handler=handler,
                code=_lambda.Code.from_asset("lambda"),
                timeout=Duration.seconds(20),
                environment={**common_env, **(extra_env or {})},
            )
            for table in all_tables:
                table.grant_read_write_data(fn)
            logs.LogGroup(
                self,
                f"{construct_name}LogGroup",
                log_group_name=f"/aws/lambda/{fn.function_name}",
                retention=logs.RetentionDays.ONE_WEEK,
                removal_policy=stateful_removal_policy,
            )
            return fn

        boards_fn = _function("BoardsHandler", "boards_handler.handler")
        auth_fn = _function(
            "AuthHandler",
            "auth_handler.handler",
            {
                "FRONTEND_URL": os.getenv("FRONTEND_URL", "http://localhost:3000"),
                "GITHUB_CLIENT_ID": os.getenv("GITHUB_CLIENT_ID", ""),
                "GITHUB_CLIENT_SECRET": os.getenv("GITHUB_CLIENT_SECRET", ""),
                "GITHUB_CALLBACK_URL": os.getenv("GITHUB_CALLBACK_URL", ""),
                "EMAIL_FROM": os.getenv("EMAIL_FROM", ""),
            },
        )
        github_fn = _function("GitHubHandler", "github_handler.handler")

        user_pool.grant(auth_fn, "cognito-idp:ListUsers", "cognito-idp:AdminCreateUser")
        auth_fn.add_to_role_policy(
            iam.PolicyStatement(
                actions=["ses:SendEmail"],
                resources=["*"],
            )
        )

        access_log_group = logs.LogGroup(
            self,
            "ApiAccessLogGroup",
            retention=logs.RetentionDays.ONE_WEEK,
            removal_policy=stateful_removal_policy,
        )
        rest_api = apigw.RestApi(
            self,
            "MiniTrelloApi",
            rest_api_name=f"{name_prefix}-api",
            deploy_options=apigw.StageOptions(
                stage_name=stage_name,
                access_log_destination=apigw.LogGroupLogDestination(access_log_group),
                # Standard fields only; do not log headers (e.g., Authorization).
                access_log_format=apigw.AccessLogFormat.json_with_standard_fields(
                    caller=True,
                    http_method=True,
                    ip=True,
                    protocol=True,
                    request_time=True,
                    resource_path=True,
                    response_length=True,
                    status=True,
                    user=True,
                ),
            ),
            cloud_watch_role=True,
        )

        boards_integration = apigw.LambdaIntegration(boards_fn)
        auth_integration = apigw.LambdaIntegration(auth_fn)
        github_integration = apigw.LambdaIntegration(github_fn)

        # Handlers verify bearer tokens themselves (session JWT or Cognito access token).
        no_auth = apigw.AuthorizationType.NONE

        health = rest_api.root.add_resource("health")
        health.add_method("GET", auth_integration, authorization_type=no_auth)

        api = rest_api.root.add_resource("api")
        auth = api.add_resource("auth")
        auth.add_proxy(default_integration=auth_integration, any_method=True)

        github = api.add_resource("github")
        github.add_proxy(default_integration=github_integration, any_method=True)

        for resource_name in ("boards", "cards", "invitations", "users"):
            resource = api.add_resource(resource_name)
            resource.add_method("ANY", boards_integration, authorization_type=no_auth)
            resource.add_proxy(default_integration=boards_integration, any_method=True)

        CfnOutput(
            self,
            "ApiUrl",
            value=rest_api.url,
            description="Base URL for the Mini Trello REST API.",
        )
        CfnOutput(
            self,
            "UserPoolId",
            value=user_pool.user_pool_id,
        )
        CfnOutput(
            self,
            "UserPoolClientId",
            value=user_pool_client.user_pool_client_id,
        )
        CfnOutput(
            self,
            "BoardsTableName",
            value=boards_table.table_name,
        )
        CfnOutput(
            self,
            "TasksTableName",
            value=tasks_table.table_name,
        )
