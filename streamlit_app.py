# streamlit_app.py
# -------------------------------------------------------------
# Simulador didático: pipeline de 5 estágios e Tomasulo
# Implementado em Python + Streamlit (interface gráfica)
# -------------------------------------------------------------
# Principais recursos:
# - Pipeline: hazards de dados, forwarding opcional, desvio "não tomado"
# - Tomasulo: estações ADD/MUL/MEM, tabela Qi, CDB, fila de memória
# - Execução passo a passo, rodar N ciclos, rodar até o fim e até breakpoint
# - Visualizações: latches/estações, registradores, memória, log do ciclo,
#   hazards/forwards e diagrama de ciclos
# -------------------------------------------------------------

from __future__ import annotations
import logging

import streamlit as st

from assembler import assemble_pipeline, assemble_tomasulo
from hardware import NUM_REGS, SimulatorError, register_name
from pipeline_core import STAGES, PipelineSim
from run_control import run_to_breakpoint, run_to_completion
from tomasulo_core import DEFAULT_LATENCIES, DEFAULT_SIZES, TomasuloSim

logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

# ==========================
# Programas exemplo
# ==========================
DEFAULT_PIPELINE_PROGRAM = """
# Exemplo didático: RAW entre loads e soma
# mem[0]=1, mem[1]=2
lw $1, 0($0)
lw $2, 1($0)
add $3, $1, $2
sw $3, 2($0)
"""

DEFAULT_TOMASULO_PROGRAM = """
# Exemplo didático: load/store e soma
# mem[0]=1, mem[1]=2
L.D $f0, 0($0)
L.D $f2, 1($0)
ADD.D $f4, $f0, $f2
S.D $f4, 0($0)
"""

# ==========================
# Interface Streamlit
# ==========================

st.set_page_config(page_title="Simulador de Pipeline e Tomasulo", layout="wide")

st.title("Simulador de Pipeline (5 estágios) e Tomasulo")

with st.sidebar:
    st.header("Configuração")
    engine_kind = st.radio("Modelo de execução", ["Pipeline", "Tomasulo"], horizontal=True)

    if engine_kind == "Pipeline":
        forwarding = st.checkbox("Forwarding", value=False)
    else:
        col_rs, col_lat = st.columns(2)
        with col_rs:
            rs_add = st.number_input("RS ADD (tam)", 1, 16, DEFAULT_SIZES["ADD"])
            rs_mul = st.number_input("RS MUL (tam)", 1, 16, DEFAULT_SIZES["MUL"])
            rs_mem = st.number_input("RS MEM (tam)", 1, 16, DEFAULT_SIZES["MEM"])
        with col_lat:
            lat_add = st.number_input("Latência ADD/SUB", 1, 20, DEFAULT_LATENCIES["ADD.D"])
            lat_mul = st.number_input("Latência MUL", 1, 50, DEFAULT_LATENCIES["MUL.D"])
            lat_div = st.number_input("Latência DIV", 1, 80, DEFAULT_LATENCIES["DIV.D"])
            lat_mem = st.number_input("Latência L.D/S.D", 1, 30, DEFAULT_LATENCIES["L.D"])

    st.markdown("---")
    st.subheader("Estado inicial")
    init_mem = st.text_input("Memória (mem[0], mem[1], ... separados por vírgula)", "1,2")
    init_regs = st.text_input("Registradores (ex: $f2=1, $3=3)", "")

    st.markdown("---")
    runN = st.number_input("Rodar N ciclos", 1, 1000, 10)
    breakpoint_idx = st.number_input("Breakpoint (índice da instrução)", 0, 999, 0)

default_prog = DEFAULT_PIPELINE_PROGRAM if engine_kind == "Pipeline" else DEFAULT_TOMASULO_PROGRAM
prog_text = st.text_area("Programa (ASM didático)", value=default_prog, height=220, key=f"prog_{engine_kind}")


def apply_initial_state(sim):
    # valores inválidos geram aviso, sem abortar a montagem
    try:
        for addr, tok in enumerate(t for t in init_mem.split(",") if t.strip()):
            sim.memory.set(addr, float(tok) if "." in tok else int(tok))
    except (ValueError, SimulatorError) as e:
        st.warning(f"Memória inicial inválida: {e}")
    try:
        for item in (t for t in init_regs.split(",") if t.strip()):
            name, val = item.split("=")
            sim.regs.set(name.strip(), float(val) if "." in val else int(val))
    except (ValueError, SimulatorError) as e:
        st.warning(f"Registradores iniciais inválidos: {e}")


# Estado na sessão
rebuild = st.button("(Re)Montar & Resetar", type="primary")
if rebuild or "sim" not in st.session_state or st.session_state.get("kind") != engine_kind:
    try:
        if engine_kind == "Pipeline":
            sim = PipelineSim(assemble_pipeline(prog_text), forwarding=forwarding)
        else:
            lat = {
                "ADD.D": int(lat_add),
                "SUB.D": int(lat_add),
                "MUL.D": int(lat_mul),
                "DIV.D": int(lat_div),
                "L.D": int(lat_mem),
                "S.D": int(lat_mem),
            }
            sizes = {"ADD": int(rs_add), "MUL": int(rs_mul), "MEM": int(rs_mem)}
            sim = TomasuloSim(assemble_tomasulo(prog_text), lat, sizes)
    except (SimulatorError, ValueError) as e:
        st.error(f"Erro na montagem: {e}")
        st.stop()
    apply_initial_state(sim)
    st.session_state.sim = sim
    st.session_state.kind = engine_kind
    st.session_state.log = []

sim = st.session_state.sim
log = st.session_state.log


def on_hazard(ev):
    log.append(f"ciclo {ev.cycle} [{ev.kind}] {ev.instruction}: {ev.description}")


def on_forward(ev):
    log.append(f"ciclo {ev.cycle} forward {ev.value} de '{ev.source}' para '{ev.target}' ({register_name(ev.register)})")


callbacks = dict(on_hazard=on_hazard, on_forward=on_forward) if isinstance(sim, PipelineSim) else {}

# Controles de execução
c1, c2, c3, c4 = st.columns(4)
try:
    if c1.button("Step (1 ciclo)"):
        sim.step(**callbacks)
    if c2.button(f"Rodar {runN} ciclos"):
        for _ in range(int(runN)):
            if sim.is_finished():
                break
            sim.step(**callbacks)
    if c3.button("Rodar até o fim", type="secondary"):
        run_to_completion(sim, **callbacks)
    if c4.button(f"Rodar até breakpoint ({breakpoint_idx})"):
        run_to_breakpoint(sim, int(breakpoint_idx), **callbacks)
except SimulatorError as e:
    st.error(f"Simulação interrompida: {e}")

if sim.is_finished():
    st.success("Execução concluída")

# Métricas
st.subheader("Métricas")
st.write(sim.metrics())

# Visualizações de estado
st.markdown("---")

colA, colB = st.columns(2)
with colA:
    if isinstance(sim, PipelineSim):
        st.markdown("### Latches do pipeline")
        st.dataframe(sim.latch_rows(), use_container_width=True)

        st.markdown("### Diagrama de ciclos")
        diagram = []
        for instr in sim.program:
            row = {"instr": str(instr)}
            for n, stages in enumerate(sim.history, start=1):
                row[str(n)] = next((s for s in STAGES if stages[s] == instr.index), "")
            diagram.append(row)
        st.dataframe(diagram, use_container_width=True)

        st.markdown("### Hazards e forwards")
        if log:
            for line in log:
                st.write("• ", line)
        else:
            st.write("(nenhum hazard detectado)")
    else:
        st.markdown("### Estações de reserva")
        st.dataframe(sim.station_rows(), use_container_width=True)

        st.markdown("### Status das instruções")
        st.dataframe([
            {
                "instr": str(t.instruction),
                "issue": t.issue,
                "início exec": t.execute_start,
                "fim exec": t.execute_end,
                "write back": t.write_back,
            }
            for t in sim.timings
        ], use_container_width=True)

with colB:
    st.markdown("### Registradores")
    regs = sim.regs.snapshot()
    st.dataframe([{register_name(i): regs[i] for i in range(NUM_REGS)}], use_container_width=True)

    if isinstance(sim, TomasuloSim):
        st.markdown("### Status dos registradores (Qi)")
        st.dataframe([{register_name(i): q for i, q in enumerate(sim.registers_status()) if q}],
                     use_container_width=True)

    st.markdown("### Memória")
    mem = sim.memory.snapshot()
    st.dataframe([{i: v for i, v in enumerate(mem)}], use_container_width=True)

st.markdown("### Programa")
st.dataframe([{"PC": instr.index, "Instr": str(instr)} for instr in sim.program], use_container_width=True)

st.markdown("### Log do ciclo atual")
if sim.events:
    for e in sim.events:
        st.write("• ", e)
else:
    st.write("(sem eventos)")

st.markdown("---")
st.caption("Simulador didático: predição de desvio fixa em \"não tomado\", um único CDB por ciclo e fila de memória em ordem de programa, sem verificação de endereços.")
