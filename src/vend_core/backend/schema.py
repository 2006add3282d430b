"""Capability probes for tables the reports depend on.

A probe answers "is this table provisioned?" with either ``Present`` or
``AbsentWithSchema`` carrying the DDL an operator can run to add it. The
presentation layer decides how to show the DDL; the engine only treats an
absent table as "no data".
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

if TYPE_CHECKING:
    from vend_core.backend.client import BackendClient

logger = logging.getLogger(__name__)

TABLE_DDL: dict[str, str] = {
    "sales": """create table if not exists public.sales (
  id uuid primary key default gen_random_uuid(),
  machine_id uuid not null references public.machines(id) on delete cascade,
  product_id uuid references public.products(id),
  occurred_at timestamptz not null default now(),
  qty integer not null default 1,
  unit_price_cents integer not null,
  unit_cost_cents integer
);
create index if not exists idx_sales_occurred_at on public.sales(occurred_at);""",
    "route_runs": """create table if not exists public.route_runs (
  id uuid primary key default gen_random_uuid(),
  route_name text,
  driver text,
  started_at timestamptz,
  finished_at timestamptz,
  odometer_start numeric,
  odometer_end numeric
);""",
    "route_stops": """create table if not exists public.route_stops (
  id uuid primary key default gen_random_uuid(),
  run_id uuid not null references public.route_runs(id) on delete cascade,
  machine_id uuid not null references public.machines(id) on delete cascade,
  arrived_at timestamptz,
  departed_at timestamptz,
  service_minutes integer,
  miles numeric
);""",
    "processor_settlements": """create table if not exists public.processor_settlements (
  id uuid primary key default gen_random_uuid(),
  processor text,
  occurred_on date not null,
  gross_cents int not null,
  fee_cents int default 0,
  net_cents int default 0,
  txn_count int,
  deposit_ref text,
  created_at timestamptz default now()
);
create index if not exists idx_ps_occurred_on on public.processor_settlements(occurred_on);""",
    "payment_processors": """create table if not exists public.payment_processors (
  id uuid primary key default gen_random_uuid(),
  name text not null,
  default_percent_fee numeric default 0,
  default_fixed_fee numeric default 0
);""",
    "machine_processor_mappings": """create table if not exists public.machine_processor_mappings (
  machine_id uuid primary key references public.machines(id) on delete cascade,
  processor_id uuid not null references public.payment_processors(id)
);""",
    "machine_finance": """create table if not exists public.machine_finance (
  machine_id uuid primary key references public.machines(id) on delete cascade,
  purchase_price numeric default 0,
  other_onetime_costs numeric default 0,
  monthly_payment numeric default 0,
  insurance_monthly numeric default 0,
  telemetry_monthly numeric default 0,
  monthly_software_cost numeric default 0
);""",
    "inventory_levels": """create table if not exists public.inventory_levels (
  id uuid primary key default gen_random_uuid(),
  machine_id uuid not null references public.machines(id) on delete cascade,
  product_id uuid not null references public.products(id),
  current_qty integer default 0,
  par_level integer default 0,
  reorder_point integer default 0,
  last_restocked_at timestamptz
);""",
    "prospects": """create table if not exists public.prospects (
  id uuid primary key default gen_random_uuid(),
  business_name text,
  status text default 'new',
  created_at timestamptz default now(),
  converted_at timestamptz,
  lost_at timestamptz
);""",
}


@dataclass(frozen=True)
class Present:
    """The table exists."""

    table: str


@dataclass(frozen=True)
class AbsentWithSchema:
    """The table is missing; ``ddl`` is the SQL that provisions it (may be empty)."""

    table: str
    ddl: str

    @property
    def notice(self) -> str:
        """Short operator-facing provisioning notice."""
        header = f"Table '{self.table}' is not provisioned."
        if not self.ddl:
            return header
        return f"{header} Run this SQL to add it:\n\n{self.ddl}"


ProbeResult = Union[Present, AbsentWithSchema]


def ddl_for(table: str) -> str:
    return TABLE_DDL.get(table, "")


def absent(table: str) -> AbsentWithSchema:
    return AbsentWithSchema(table=table, ddl=ddl_for(table))


def probe_table(client: BackendClient, table: str) -> ProbeResult:
    """Probe ``table`` and return ``Present`` or ``AbsentWithSchema``."""
    if client.probe(table):
        return Present(table)
    logger.warning("Table %s is not provisioned", table)
    return absent(table)
