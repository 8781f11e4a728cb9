"""
Renders the dedicated-table infrastructure description for a private account.

Rendering is a pure function of TemplateParameters: no clock, no randomness,
no I/O. render_template_body() serialises with sorted keys so identical
parameters always produce byte-identical output, which lets a retried
orchestrator step re-render and resubmit safely.
"""
import json
from typing import Any, Dict, List, Mapping, Union

from pydantic import ValidationError

from onboarding.core.exceptions import TemplateValidationError
from onboarding.modules.templates.schemas import TemplateParameters

TEMPLATE_FORMAT_VERSION = "2010-09-09"
TABLE_LOGICAL_ID = "AccountTable"

KEY_ATTRIBUTES = ["PK", "SK", "GSI1PK", "GSI1SK", "GSI2PK", "GSI2SK"]
SECONDARY_INDEXES = [
    ("GSI1", "GSI1PK", "GSI1SK"),
    ("GSI2", "GSI2PK", "GSI2SK"),
]


def parse_parameters(raw: Union[Mapping[str, Any], TemplateParameters]) -> TemplateParameters:
    """Validate raw tenant parameters. Raises TemplateValidationError before any external call."""
    if isinstance(raw, TemplateParameters):
        return raw
    try:
        return TemplateParameters.model_validate(dict(raw))
    except ValidationError as e:
        errors = [
            f"{'.'.join(str(p) for p in err['loc']) or 'parameters'}: {err['msg']}"
            for err in e.errors()
        ]
        raise TemplateValidationError(errors) from e


def _throughput(params: TemplateParameters) -> Dict[str, Dict[str, int]]:
    # On-demand tables must not carry a ProvisionedThroughput block at all
    if not params.is_provisioned:
        return {}
    return {
        "ProvisionedThroughput": {
            "ReadCapacityUnits": params.read_capacity,
            "WriteCapacityUnits": params.write_capacity,
        }
    }


def _secondary_indexes(params: TemplateParameters) -> List[Dict[str, Any]]:
    return [
        {
            "IndexName": index_name,
            "KeySchema": [
                {"AttributeName": hash_key, "KeyType": "HASH"},
                {"AttributeName": range_key, "KeyType": "RANGE"},
            ],
            "Projection": {"ProjectionType": "ALL"},
            **_throughput(params),
        }
        for index_name, hash_key, range_key in SECONDARY_INDEXES
    ]


def _tags(params: TemplateParameters) -> List[Dict[str, str]]:
    return [
        {"Key": "AccountId", "Value": params.account_id},
        {"Key": "AccountName", "Value": params.account_name},
        {"Key": "Environment", "Value": params.environment},
        {"Key": "CloudType", "Value": "private"},
        {"Key": "ManagedBy", "Value": "CloudFormation-Runtime"},
    ]


def _parameter_resource(params: TemplateParameters, key: str, value: Any, description: str) -> Dict[str, Any]:
    return {
        "Type": "AWS::SSM::Parameter",
        # Outputs are written once and kept after stack deletion
        "DeletionPolicy": "Retain",
        "Properties": {
            "Name": f"/accounts/{params.account_id}/dynamodb/{key}",
            "Type": "String",
            "Value": value,
            "Description": description,
        },
    }


def render_template(raw: Union[Mapping[str, Any], TemplateParameters]) -> Dict[str, Any]:
    """Render the infrastructure description as a dict."""
    params = parse_parameters(raw)

    table_properties = {
        "TableName": params.table_name,
        "BillingMode": params.billing_mode,
        "DeletionProtectionEnabled": params.enable_deletion_protection == "true",
        "PointInTimeRecoverySpecification": {
            "PointInTimeRecoveryEnabled": params.enable_point_in_time_recovery == "true",
        },
        "SSESpecification": {"SSEEnabled": True},
        "AttributeDefinitions": [
            {"AttributeName": name, "AttributeType": "S"} for name in KEY_ATTRIBUTES
        ],
        "KeySchema": [
            {"AttributeName": "PK", "KeyType": "HASH"},
            {"AttributeName": "SK", "KeyType": "RANGE"},
        ],
        "GlobalSecondaryIndexes": _secondary_indexes(params),
        "Tags": _tags(params),
        **_throughput(params),
    }

    return {
        "AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION,
        "Description": f"Dedicated DynamoDB table for private account {params.account_id}",
        "Resources": {
            TABLE_LOGICAL_ID: {
                "Type": "AWS::DynamoDB::Table",
                # Tenant data outlives the stack
                "DeletionPolicy": "Retain",
                "UpdateReplacePolicy": "Retain",
                "Properties": table_properties,
            },
            "TableNameParam": _parameter_resource(
                params, "table-name", {"Ref": TABLE_LOGICAL_ID},
                f"DynamoDB table name for private account {params.account_id}",
            ),
            "TableArnParam": _parameter_resource(
                params, "table-arn", {"Fn::GetAtt": [TABLE_LOGICAL_ID, "Arn"]},
                f"DynamoDB table ARN for private account {params.account_id}",
            ),
        },
        "Outputs": {
            "TableName": {
                "Description": "Name of the provisioned DynamoDB table",
                "Value": {"Ref": TABLE_LOGICAL_ID},
            },
            "TableArn": {
                "Description": "ARN of the provisioned DynamoDB table",
                "Value": {"Fn::GetAtt": [TABLE_LOGICAL_ID, "Arn"]},
            },
        },
    }


def render_template_body(raw: Union[Mapping[str, Any], TemplateParameters]) -> str:
    """Render the description as canonical JSON (the body submitted to CloudFormation)."""
    return json.dumps(render_template(raw), sort_keys=True, indent=2, ensure_ascii=False)
