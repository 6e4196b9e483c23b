import asyncio
import json
from test.aibs_informatics_lambda_deploy.base import make_descriptor
from test.base import AwsBaseTest

import boto3
from botocore.exceptions import ClientError
from moto import mock_aws

from aibs_informatics_lambda_deploy.common.aws import RegionContext
from aibs_informatics_lambda_deploy.desired_state.model import (
    EventSourceBinding,
    ScheduleBinding,
    StartingPosition,
)
from aibs_informatics_lambda_deploy.reconcile.client import LambdaPlatformClient

FUNCTION_NAME = "my-function-dev"
FUNCTION_ARN = f"arn:aws:lambda:us-west-2:123456789012:function:{FUNCTION_NAME}"
RULE_ARN = "arn:aws:events:us-west-2:123456789012:rule/nightly"
QUEUE_ARN = "arn:aws:sqs:us-west-2:123456789012:queue-a"
STREAM_ARN = "arn:aws:kinesis:us-west-2:123456789012:stream/stream-a"
MAPPING_UUID_1 = "6f9619ff-8b86-d011-b42d-00c04fc964ff"
MAPPING_UUID_2 = "1b4e28ba-2fa1-11d2-883f-0016d3cca427"


class LambdaPlatformClientTests(AwsBaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.set_aws_credentials()
        self.lambda_client = boto3.client("lambda", region_name=self.US_WEST_2)
        self.events_client = boto3.client("events", region_name=self.US_WEST_2)
        self.lambda_stubber = self.stub(self.lambda_client)
        self.events_stubber = self.stub(self.events_client)
        self.lambda_stubber.activate()
        self.events_stubber.activate()
        self.addCleanup(self.lambda_stubber.deactivate)
        self.addCleanup(self.events_stubber.deactivate)
        self.client = LambdaPlatformClient(
            region=self.US_WEST_2,
            lambda_client=self.lambda_client,
            events_client=self.events_client,
        )

    def tearDown(self) -> None:
        self.lambda_stubber.assert_no_pending_responses()
        self.events_stubber.assert_no_pending_responses()
        super().tearDown()

    def test__get_function__returns_none_when_missing(self):
        self.lambda_stubber.add_client_error(
            "get_function",
            service_error_code="ResourceNotFoundException",
            http_status_code=404,
            expected_params={"FunctionName": FUNCTION_NAME},
        )

        self.assertIsNone(asyncio.run(self.client.get_function(FUNCTION_NAME)))

    def test__get_function__raises_other_errors(self):
        self.lambda_stubber.add_client_error(
            "get_function",
            service_error_code="AccessDeniedException",
            http_status_code=403,
        )

        with self.assertRaises(ClientError):
            asyncio.run(self.client.get_function(FUNCTION_NAME))

    def test__create_function__sends_full_descriptor(self):
        descriptor = make_descriptor(function_name=FUNCTION_NAME, publish=True)
        self.lambda_stubber.add_response(
            "create_function",
            {"FunctionName": FUNCTION_NAME, "FunctionArn": FUNCTION_ARN},
            expected_params={
                "FunctionName": FUNCTION_NAME,
                "Runtime": "python3.12",
                "Handler": "lambda_function.lambda_handler",
                "Role": "arn:aws:iam::123456789012:role/lambda-role",
                "Description": "test function",
                "MemorySize": 256,
                "Timeout": 30,
                "Environment": {"Variables": {"KEY": "value"}},
                "VpcConfig": {"SubnetIds": [], "SecurityGroupIds": []},
                "Code": {"ZipFile": b"PK-artifact"},
                "Publish": True,
            },
        )

        response = asyncio.run(self.client.create_function(descriptor))

        self.assertEqual(response["FunctionArn"], FUNCTION_ARN)

    def test__update_function__updates_code_then_configuration(self):
        descriptor = make_descriptor(function_name=FUNCTION_NAME)
        self.lambda_stubber.add_response(
            "update_function_code",
            {"FunctionName": FUNCTION_NAME},
            expected_params={
                "FunctionName": FUNCTION_NAME,
                "ZipFile": b"PK-artifact",
                "Publish": False,
            },
        )
        self.lambda_stubber.add_response(
            "get_function_configuration",
            {"FunctionName": FUNCTION_NAME, "LastUpdateStatus": "Successful"},
            expected_params={"FunctionName": FUNCTION_NAME},
        )
        self.lambda_stubber.add_response(
            "update_function_configuration",
            {"FunctionName": FUNCTION_NAME, "FunctionArn": FUNCTION_ARN},
            expected_params=descriptor.configuration_params(),
        )

        response = asyncio.run(self.client.update_function(descriptor))

        self.assertEqual(response["FunctionArn"], FUNCTION_ARN)

    def test__list_event_source_mappings__follows_pages(self):
        self.lambda_stubber.add_response(
            "list_event_source_mappings",
            {
                "EventSourceMappings": [
                    {
                        "UUID": MAPPING_UUID_1,
                        "EventSourceArn": QUEUE_ARN,
                        "State": "Enabled",
                        "BatchSize": 10,
                    }
                ],
                "NextMarker": "next",
            },
            expected_params={"FunctionName": FUNCTION_NAME},
        )
        self.lambda_stubber.add_response(
            "list_event_source_mappings",
            {
                "EventSourceMappings": [
                    {
                        "UUID": MAPPING_UUID_2,
                        "EventSourceArn": STREAM_ARN,
                        "State": "Disabled",
                        "BatchSize": 100,
                    }
                ],
            },
            expected_params={"FunctionName": FUNCTION_NAME, "Marker": "next"},
        )

        bindings = asyncio.run(self.client.list_event_source_mappings(FUNCTION_NAME))

        self.assertEqual(
            bindings,
            [
                EventSourceBinding(
                    source_arn=QUEUE_ARN, enabled=True, batch_size=10, remote_id=MAPPING_UUID_1
                ),
                EventSourceBinding(
                    source_arn=STREAM_ARN,
                    enabled=False,
                    batch_size=100,
                    remote_id=MAPPING_UUID_2,
                ),
            ],
        )

    def test__create_event_source_mapping__omits_starting_position_for_queues(self):
        self.lambda_stubber.add_response(
            "create_event_source_mapping",
            {"UUID": MAPPING_UUID_1},
            expected_params={
                "FunctionName": FUNCTION_NAME,
                "EventSourceArn": QUEUE_ARN,
                "Enabled": True,
                "BatchSize": 10,
            },
        )
        binding = EventSourceBinding(source_arn=QUEUE_ARN, enabled=True, batch_size=10)

        response = asyncio.run(self.client.create_event_source_mapping(FUNCTION_NAME, binding))

        self.assertEqual(response["UUID"], MAPPING_UUID_1)

    def test__create_event_source_mapping__sends_starting_position_for_streams(self):
        self.lambda_stubber.add_response(
            "create_event_source_mapping",
            {"UUID": MAPPING_UUID_1},
            expected_params={
                "FunctionName": FUNCTION_NAME,
                "EventSourceArn": STREAM_ARN,
                "Enabled": False,
                "BatchSize": 100,
                "StartingPosition": "TRIM_HORIZON",
            },
        )
        binding = EventSourceBinding(
            source_arn=STREAM_ARN, starting_position=StartingPosition.TRIM_HORIZON
        )

        asyncio.run(self.client.create_event_source_mapping(FUNCTION_NAME, binding))

    def test__update_and_delete_event_source_mapping__use_remote_id(self):
        self.lambda_stubber.add_response(
            "update_event_source_mapping",
            {"UUID": MAPPING_UUID_1},
            expected_params={
                "UUID": MAPPING_UUID_1,
                "FunctionName": FUNCTION_NAME,
                "Enabled": False,
                "BatchSize": 5,
            },
        )
        self.lambda_stubber.add_response(
            "delete_event_source_mapping",
            {"UUID": MAPPING_UUID_2},
            expected_params={"UUID": MAPPING_UUID_2},
        )
        binding = EventSourceBinding(source_arn=QUEUE_ARN, batch_size=5)

        asyncio.run(
            self.client.update_event_source_mapping(FUNCTION_NAME, binding, MAPPING_UUID_1)
        )
        asyncio.run(self.client.delete_event_source_mapping(MAPPING_UUID_2))

    def add_schedule_responses(self, permission_error: str = ""):
        self.events_stubber.add_response(
            "put_rule",
            {"RuleArn": RULE_ARN},
            expected_params={
                "Name": "nightly",
                "ScheduleExpression": "cron(0 3 * * ? *)",
                "State": "ENABLED",
                "Description": "nightly run",
            },
        )
        permission_params = {
            "FunctionName": FUNCTION_ARN,
            "StatementId": "nightly",
            "Action": "lambda:InvokeFunction",
            "Principal": "events.amazonaws.com",
            "SourceArn": RULE_ARN,
        }
        if permission_error:
            self.lambda_stubber.add_client_error(
                "add_permission",
                service_error_code=permission_error,
                http_status_code=409,
                expected_params=permission_params,
            )
        else:
            self.lambda_stubber.add_response(
                "add_permission", {"Statement": "{}"}, expected_params=permission_params
            )
        self.events_stubber.add_response(
            "put_targets",
            {"FailedEntryCount": 0, "FailedEntries": []},
            expected_params={
                "Rule": "nightly",
                "Targets": [
                    {"Id": "nightly", "Arn": FUNCTION_ARN, "Input": json.dumps({"key": 1})}
                ],
            },
        )

    def schedule(self) -> ScheduleBinding:
        return ScheduleBinding(
            rule_name="nightly",
            schedule_expression="cron(0 3 * * ? *)",
            enabled=True,
            target_input={"key": 1},
            description="nightly run",
        )

    def test__put_schedule__puts_rule_permission_and_target(self):
        self.add_schedule_responses()

        rule_arn = asyncio.run(self.client.put_schedule(FUNCTION_ARN, self.schedule()))

        self.assertEqual(rule_arn, RULE_ARN)

    def test__put_schedule__tolerates_existing_permission(self):
        self.add_schedule_responses(permission_error="ResourceConflictException")

        rule_arn = asyncio.run(self.client.put_schedule(FUNCTION_ARN, self.schedule()))

        self.assertEqual(rule_arn, RULE_ARN)

    def test__put_schedule__raises_other_permission_errors(self):
        self.events_stubber.add_response("put_rule", {"RuleArn": RULE_ARN})
        self.lambda_stubber.add_client_error(
            "add_permission", service_error_code="AccessDeniedException", http_status_code=403
        )

        with self.assertRaises(ClientError):
            asyncio.run(self.client.put_schedule(FUNCTION_ARN, self.schedule()))


class LambdaPlatformClientMotoTests(AwsBaseTest):
    def setUp(self) -> None:
        super().setUp()
        self.set_aws_credentials()
        self.mock_aws = mock_aws()
        self.mock_aws.start()
        self.addCleanup(self.mock_aws.stop)

    def test__from_context__clients_are_bound_to_region(self):
        client = LambdaPlatformClient.from_context(RegionContext(region=self.US_EAST_1))

        self.assertEqual(client.region, self.US_EAST_1)
        self.assertEqual(client.lambda_client.meta.region_name, self.US_EAST_1)
        self.assertEqual(client.events_client.meta.region_name, self.US_EAST_1)

    def test__get_function__missing_function_probes_as_none(self):
        client = LambdaPlatformClient.from_context(RegionContext(region=self.US_WEST_2))

        self.assertIsNone(asyncio.run(client.get_function("does-not-exist")))
