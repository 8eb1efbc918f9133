# Copyright 2023 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import logging
import os
import signal
import sys

import simple_acme_order

logging.basicConfig(level=logging.DEBUG if "--verbose" in sys.argv else logging.INFO)

# Read tunables such as SIMPLE_ACME_ORDER_KEY_TYPE=rsa4096 from the environment, using the staging environment
config = simple_acme_order.OrderConfig.from_env().replace(
    directory=simple_acme_order.config.LETS_ENCRYPT_STAGING_DIRECTORY
)

# Stop the order cleanly at the next network call or retry delay when interrupted
cancel_token = simple_acme_order.CancellationToken()
signal.signal(signal.SIGINT, lambda signum, frame: cancel_token.cancel())

os.makedirs("certificates", exist_ok=True)
orchestrator = simple_acme_order.OrderOrchestrator(
    simple_acme_order.ACMEv2Client.from_config(config),
    simple_acme_order.FileSystemCertificateStore("certificates"),
    config=config,
    cancel_token=cancel_token
)
orchestrator.authenticate(email="user@jaredhendrickson.com")

# A base domain and its wildcard are validated through the same record, which must hold both values
if "--resume" not in sys.argv:
    records = orchestrator.begin_order(["test.jaredhendrickson.com", "*.test.jaredhendrickson.com"])
    for record in records:
        print(f"{record.domain} --> {', '.join(record.values)}")

    # [ !!! ADD YOUR CODE TO UPLOAD THE VALUES TO YOUR DNS SERVER HERE; OR UPLOAD THE VALUES MANUALLY !!! ]
    # Then run this script again with --resume, the order is kept in the 'certificates' directory
    sys.exit(0)

# Resume the stored order from a new process
try:
    orchestrator.resume_order(common_name="test.jaredhendrickson.com")
except simple_acme_order.errors.OrderCancelled:
    print("Order cancelled, run again with --resume to continue")
    sys.exit(130)
except simple_acme_order.errors.OrderNotFound:
    print("No usable order found, run again without --resume to place a new order")
    sys.exit(1)
except simple_acme_order.errors.SimpleAcmeOrderError as exc:
    print(f"Failed to issue certificate: {exc.message}")
    sys.exit(1)

print(orchestrator.certificate)
print(orchestrator.issuer_chain)
