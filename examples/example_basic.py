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
import sys

import simple_acme_order

logging.basicConfig(level=logging.INFO)

# Keep the account key, order and certificate in a fixed directory so the account is reused and an order can be
# resumed later
os.makedirs("certificates", exist_ok=True)
store = simple_acme_order.FileSystemCertificateStore("certificates")

# Create an orchestrator to interface with the ACME server. In this example, the Let's Encrypt staging environment.
config = simple_acme_order.OrderConfig(
    directory=simple_acme_order.config.LETS_ENCRYPT_STAGING_DIRECTORY,
    nameservers=["8.8.8.8", "1.1.1.1"],  # Set the nameservers used to find each domain's authoritative nameservers
    dns_check_retry_limit=40,  # Keep checking DNS for 1200 seconds (20 minutes) before giving up
)
orchestrator = simple_acme_order.OrderOrchestrator(
    simple_acme_order.ACMEv2Client.from_config(config), store, config=config
)

# Load the stored account, or register a new one with this email address
orchestrator.authenticate(email="user@example.com")

# Place the order. Print each validation record and the values it must hold.
for record in orchestrator.begin_order(["test.example.com"]):
    print(f"{record.domain} -> {record.values}")

# [ !!! ADD YOUR CODE TO UPLOAD THE VALUES TO YOUR DNS SERVER HERE; OR UPLOAD THE VALUES MANUALLY !!! ]

# Wait for the records to reach the authoritative nameservers, then validate, finalize and download the certificate
try:
    orchestrator.resume_order()
except simple_acme_order.errors.SimpleAcmeOrderError as exc:
    print(f"Failed to issue certificate: {exc.message}")
    sys.exit(1)

print(orchestrator.certificate)
print(orchestrator.private_key)
