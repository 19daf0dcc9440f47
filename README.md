# u2fhid

Talk to U2F (CTAP1) security keys over HID from Python. The package has
no dependencies outside the standard library.

## Modules

- `u2fhid.u2ftypes` – HID packet framing and the device interface:
  `write_init_packet`, `read_init_packet`, `write_cont_packet`,
  `read_cont_packet`, CTAP1 APDU framing with `serialize_apdu`, the
  abstract base class `U2FDevice`, the `U2FDeviceInfo` and `InitResponse`
  dataclasses, `to_hex`, and the `DeviceError` exception (a subclass of
  `OSError`).
- `u2fhid.protocol` – device commands: `u2f_init_device`, `u2f_register`,
  `u2f_sign`, `u2f_is_keyhandle_valid`, `init_device`, `is_v2_device`,
  and the lower-level `sendrecv` and `send_ctap1`.
- `u2fhid.statecallback` – `StateCallback`, a thread-safe result callback
  that runs at most once across all of its clones and can be waited on.
- `u2fhid.transaction` – `RunLoop` (a background thread with an `alive()`
  check and an optional timeout in milliseconds), `Transaction`,
  `unsupported_transaction`, and the errors `AuthenticatorError` and
  `U2FTokenError`.
- `u2fhid.statemachine` – `StateMachine`, which runs register and sign
  requests against every device a transaction finds, reporting progress
  as `StatusUpdate` values; also `KeyHandle`, `AuthenticatorTransports`,
  `is_valid_transport` and `find_valid_key_handles`.
- `u2fhid.fidodev` – `FidoDev`, `FidoDevice` and `Monitor`, for U2F
  devices exposed as `/dev/fido/0` … `/dev/fido/9` character devices.
- `u2fhid.softtoken` – `SoftwareU2FToken`, a token that answers every
  request with fixed data.
- `u2fhid.testtoken` – `TestToken`, `TestTokenCredential` and
  `TestWireProtocol`, virtual CTAP1 tokens that hold an ordered list of
  credentials.

## Installing

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Examples

A `StateCallback` runs its callback once, whichever clone is called first:

```python
from u2fhid.statecallback import StateCallback

results = []
callback = StateCallback(results.append)

worker_copy = callback.clone()
worker_copy.call("done")   # runs the callback
worker_copy.call("again")  # ignored

assert callback.wait(timeout=1.0)
assert results == ["done"]
```

Framing a CTAP1 request:

```python
from u2fhid.u2ftypes import serialize_apdu

assert serialize_apdu(1, 2, b"\x2a") == bytes([0, 1, 2, 0, 0, 0, 1, 42, 0, 0])
```

Registering with the first `/dev/fido/N` device the user touches:

```python
import functools

from u2fhid.fidodev import FidoDevice, Monitor
from u2fhid.statecallback import StateCallback
from u2fhid.statemachine import StateMachine
from u2fhid.transaction import Transaction

results = []
callback = StateCallback(results.append)

machine = StateMachine(
    transaction_factory=functools.partial(Transaction, monitor_factory=Monitor),
    device_factory=FidoDevice,
)
machine.register(
    flags=0,
    timeout=10_000,           # milliseconds
    challenge=bytes(32),
    application=bytes(32),
    key_handles=[],
    status=print,             # receives StatusUpdate values
    callback=callback,
)
callback.wait()
machine.cancel()
# results[0] is (response, dev_info) or an AuthenticatorError
```

The callback receives either the result tuple or an `AuthenticatorError`
value. When the timeout passes without a device finishing, it receives
`AuthenticatorError(U2FTokenError.NOT_ALLOWED)`; if the device monitor
fails, a platform error (`error.is_platform` is true).

A device is any subclass of `U2FDevice` that supplies `read`, `write` and
`get_property`. The protocol functions raise `DeviceError` when a device
misbehaves or answers with an error status, and `ValueError` for a
challenge or application that is not 32 bytes, or a key handle longer
than 256 bytes.

## What it does not do

- Device discovery is limited to `Monitor`, which polls `/dev/fido/N`
  nodes; there is no discovery of hidraw, Windows or macOS HID devices.
  Other monitors can be plugged into `Transaction` through its
  `monitor_factory` argument.
- Only CTAP1/U2F is spoken; `TestToken` rejects `TestWireProtocol.CTAP2`.
- Register and sign requests with flags set are ignored by every device,
  since selection criteria and user verification cannot be checked on
  U2F tokens.
- There is no command-line tool and no server for managing the virtual
  test tokens.