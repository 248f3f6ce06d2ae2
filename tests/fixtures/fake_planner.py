"""
Stand-in for an external planner command, used by the adapter tests.

Usage: fake_planner.py MODE SCHEMA_PATH OPERATION_PATH
"""

import json
import os
import sys
import time


def fetch(service, operation):
    return {
        "kind": "Fetch",
        "serviceName": service,
        "variableUsages": [],
        "operation": operation,
        "operationKind": "query",
    }


def main():
    mode, schema_path, operation_path = sys.argv[1:4]
    with open(operation_path, encoding="utf-8") as f:
        operation = f.read()
    with open(schema_path, encoding="utf-8") as f:
        schema = f.read()

    if mode == "ok":
        print(json.dumps({"queryPlan": {"node": fetch("accounts", operation)}, "formattedQueryPlan": "QueryPlan {}"}))
    elif mode == "echo_schema":
        print(json.dumps({"queryPlan": {"node": fetch(schema.strip(), operation)}}))
    elif mode == "data":
        print(json.dumps({"data": {"queryPlan": {"node": fetch("accounts", operation)}}}))
    elif mode == "empty":
        print(json.dumps({"queryPlan": {"node": None}}))
    elif mode == "env":
        service = "fragments-" + os.environ.get("QPCOMPARE_GENERATE_FRAGMENTS", "unset")
        print(json.dumps({"queryPlan": {"node": fetch(service, operation)}}))
    elif mode == "invalid_operation":
        sys.stderr.write("Cannot query field 'nope' on type 'Query'\n")
        sys.exit(3)
    elif mode == "composition":
        sys.exit(4)
    elif mode == "crash":
        sys.stderr.write("panicked at 'index out of bounds'\n")
        sys.exit(101)
    elif mode == "errors":
        print(json.dumps({
            "errors": [
                {"message": "Cannot query field 'nope'", "extensions": {"code": "GRAPHQL_VALIDATION_FAILED"}}
            ]
        }))
    elif mode == "supergraph_errors":
        print(json.dumps({
            "errors": [
                {"message": "Invalid supergraph", "extensions": {"code": "INVALID_SUPERGRAPH"}}
            ]
        }))
    elif mode == "garbage":
        print("this is not json")
    elif mode == "bad_plan":
        print(json.dumps({"queryPlan": {"node": {"kind": "Fetch"}}}))
    elif mode == "sleep":
        time.sleep(10)
    else:
        sys.exit(99)


if __name__ == "__main__":
    main()
