# dnsagent

Building blocks for a local DNS forwarding agent that runs on a workstation
or a home router. It covers three jobs:

- **Client discovery**: put names to the devices on the LAN. Names can come
  from the hosts file, DHCP lease files (ISC dhcpd and dnsmasq), reverse
  lookups against the local resolver, multicast DNS traffic, router client
  lists (ASUSWRT-Merlin, UniFi OS) and the ARP table.
- **Settings**: pick a profile id for each client by subnet or MAC address,
  send chosen domains to their own upstream servers, parse sizes such as
  `42MB`, and read the agent's settings from command-line style flags.
- **Control**: a small JSON-lines event protocol over a Unix socket. A server
  answers named commands on it, and the `dnsagent` command sends them.

## Installation

```
pip install .
```

Python 3.10 or newer is required. The package depends on `dnspython` and
`psutil`.

## Command line

The `dnsagent` command sends one named command to a running server over its
control socket and prints the reply. A reply that is a string is printed as
it is; any other reply is printed as indented JSON with sorted keys.

```
dnsagent <command> [-control ADDRESS]
```

`-control` (also accepted as `--control`) defaults to
`/var/run/dnsagent.sock`. For example:

```
dnsagent discovered -control /tmp/agent.sock
```

The exit status is 0 on success, 1 when the socket cannot be reached or the
connection drops, and 2 when no command is given. The server decides which
commands it answers; a command with no registered handler gets a `null`
reply.

## Library overview

| Module | Purpose |
| --- | --- |
| `dnsagent.names` | Name helpers (`is_valid_name`, `lower_ascii`, `abs_domain_name`, `prepare_host_lookup`, `append_uniq`), `FileInfo` / `get_file_info` change detection, `SemaphoreMap` |
| `dnsagent.sources` | `Resolver`, which asks several discovery sources in order; `Dummy`, a source that knows nothing |
| `dnsagent.hosts_file` | `Hosts` source, `read_hosts_file`, `parse_literal_ip`, `find_hosts_file` |
| `dnsagent.dhcp` | `DHCP` source, `read_dhcpd_lease`, `read_dnsmasq_lease`, `find_lease_file` |
| `dnsagent.dns_source` | `DNS` source: PTR, A and AAAA queries to a private upstream resolver; `query_ptr`, `query_name`, `reverse_ip`, `is_private_ip`, `DNSError` |
| `dnsagent.mdns` | `MDNS` source: listens for multicast DNS answers and probes known services; `parse_entries`, `build_probe`, `multicast_interfaces` |
| `dnsagent.router_clients` | `Merlin` and `Ubios` sources; `read_client_list`, `parse_ubios_records` |
| `dnsagent.arp` | `ArpTable`, `ArpCache`, `get_table`, parsers for `/proc/net/arp` and `arp` output, cached `search_mac` / `search_ip` |
| `dnsagent.profiles` | `Profiles` and `ProfileRule`: profile ids with optional subnet or MAC conditions |
| `dnsagent.forwarders` | `Forwarders` and `Forwarder`: upstream servers per domain |
| `dnsagent.units` | `parse_bytes` for human-readable sizes |
| `dnsagent.settings` | `Config`: the agent's settings and their flag parsing |
| `dnsagent.control` | `Event`, `Client`, `Server` and `dial` for the control socket |
| `dnsagent.cli` | `main`, the `dnsagent` command |

### Looking up clients

Every source has `name()`, `visit(f)`, `lookup_addr(addr)` and
`lookup_host(name)`; `DHCP`, `Merlin` and `Ubios` also have
`lookup_mac(mac)`. A `Resolver` lowercases its argument and returns the
answer of the first source that has one, or an empty list.

```python
from dnsagent.sources import Resolver
from dnsagent.hosts_file import Hosts
from dnsagent.dhcp import DHCP

resolver = Resolver([Hosts(), DHCP()])
print(resolver.lookup_addr("192.168.1.20"))   # e.g. ['laptop.']
print(resolver.lookup_host("laptop"))         # e.g. ['192.168.1.20']
print(resolver.lookup_mac("02:00:00:00:00:01"))
```

`Hosts` and `DHCP` use the first file that exists among the usual
locations, check it at most every five seconds, and parse it again only
when its size or modification time has changed. Read errors go to the
optional `on_error` callback. Names from these sources, from `DNS` and
from `MDNS` are absolute domain names with a trailing dot; DHCP leases
also answer for `<name>.local.`.

`DNS(upstream="192.168.1.1")` queries that server; with no upstream it
takes the first private name server of the system configuration. Answers,
including empty ones, are cached for five minutes, and a lookup that is
already in flight for the same key returns an empty list to break loops.

`MDNS().start("all")` listens on every up, multicast-capable interface
(or on one named interface; `"disabled"` does nothing) and `stop()` closes
the sockets. `Merlin` and `Ubios` run the router's own tools
(`nvram`, `mongo`) and only act on the firmware they recognise.

### Reading sizes

```python
from dnsagent.units import parse_bytes

parse_bytes("42MB")          # 44040192
parse_bytes("1,234.03 MB")   # 1293974241
```

Units go from `b` to `eb` in powers of 1024. Case does not matter and the
trailing `b` may be left out. A missing number, an unknown unit or a value
of 2**64 or more raises `ValueError`.

### Choosing a profile

Each definition is `PROFILE`, `CIDR=PROFILE` or `MAC=PROFILE`. A new
definition with the same condition replaces the old one; an invalid
condition raises `ValueError`. `get` returns the first matching profile,
or `""`.

```python
from dnsagent.profiles import Profiles

profiles = Profiles()
profiles.set("10.10.10.0/27=office")
profiles.set("02:00:00:00:00:01=kids")
profiles.set("default")
profiles.get("10.10.10.21", None)                 # 'office'
profiles.get("192.168.0.5", "02:00:00:00:00:01")  # 'kids'
```

### Forwarders

Each definition is `[DOMAIN=]SERVER[,SERVER...]`, where a server is
`IP[:PORT]` or an `https://` URL with an optional `#IP` bootstrap address.
The domain is made absolute, and a forwarder matches that domain and its
subdomains. `Forwarders.get` returns the matching `Forwarder` (whose
`servers` lists its addresses in order) or `None`. The package checks the
addresses but does not send queries to them.

```python
from dnsagent.forwarders import Forwarders

fwd = Forwarders()
fwd.set("corp.example=10.0.0.1:53,10.0.0.2")
fwd.get("host.corp.example.").servers   # ['10.0.0.1:53', '10.0.0.2']
```

### Settings

`Config.parse(args)` reads single-dash flags (`-name value`, `-name=value`,
and `-name` alone for booleans), resets scalar settings to their defaults
first, and raises `ValueError` on an unknown flag or a bad value. Flags
include `-listen`, `-control`, `-config`, `-forwarder`, `-cache-size`,
`-cache-max-age`, `-max-ttl`, `-timeout`, `-mdns`, `-bogus-priv`,
`-use-hosts` and `-max-inflight-requests`. When no `-listen` is given,
`localhost:53` is used. `to_entries()` returns `(name, value)` pairs and
`write(stream)` prints them as `name value` lines.

```python
import sys
from dnsagent.settings import Config

config = Config()
config.parse(["-listen", "127.0.0.1:5353", "-timeout", "2s", "-log-queries"])
config.write(sys.stdout)
```

### Control socket

```python
from dnsagent.control import Server, Event, dial

server = Server("/tmp/agent.sock")
server.command("ping", lambda data: "pong")
server.start()

with dial("/tmp/agent.sock") as client:
    print(client.send(Event(name="ping")))   # pong

server.stop()
```

`Server.broadcast(event)` sends an event to every connected client. The
optional `on_connect`, `on_disconnect`, `on_event` and `error_log`
callbacks are called as their names say.

## What this package does not do

- It does not run a DNS proxy: nothing here listens for DNS queries,
  answers them, caches them or forwards them upstream. `Config` and
  `Forwarders` only hold and check the settings such a proxy would use.
- Settings are not stored on disk: `Config` has no load or save, and
  `-config-file` is parsed but not read.
- It does not change the system's DNS configuration.
- The control channel uses Unix domain sockets only.

## Running the tests

```
pip install .[test]
pytest
```