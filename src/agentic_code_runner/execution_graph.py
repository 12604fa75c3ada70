"""LangGraph wrapper for the execution loop.

Wires the same sanitize/execute/correct nodes into a StateGraph so each
attempt shows up as a node in LangGraph Studio. No new orchestration logic:
routing reads the status the nodes already set.
"""

from typing_extensions import TypedDict

from langgraph.graph import END, StateGraph

from agentic_code_runner.execution_loop import LoopDeps, correct_node, execute_node, sanitize_node
from agentic_code_runner.execution_state import LoopState


class ExecutionGraphState(TypedDict):
    """Graph state: the loop state plus the collaborators passed through."""
    loop: LoopState
    deps: LoopDeps


# --- Graph Nodes ---

def node_sanitize(state: ExecutionGraphState) -> dict:
    return {"loop": sanitize_node(state["loop"], state["deps"])}


def node_execute(state: ExecutionGraphState) -> dict:
    return {"loop": execute_node(state["loop"], state["deps"])}


def node_correct(state: ExecutionGraphState) -> dict:
    return {"loop": correct_node(state["loop"], state["deps"])}


# --- Conditional Edges ---

def after_sanitize(state: ExecutionGraphState) -> str:
    return "end" if state["loop"].done else "execute"


def after_execute(state: ExecutionGraphState) -> str:
    return "correct" if state["loop"].status == "CORRECTING" else "end"


def after_correct(state: ExecutionGraphState) -> str:
    return "sanitize" if state["loop"].status == "SANITIZING" else "end"


# --- Graph Builder ---

def build_execution_graph() -> StateGraph:
    """
    Build the execution graph.

    Flow:
        sanitize -> (rejected?) -> end
                 -> execute -> (succeeded / fatal?) -> end
                            -> (compilation failure) -> correct -> (fixed?) -> sanitize
                                                                -> (exhausted / no fix) -> end
    """
    graph = StateGraph(ExecutionGraphState)

    graph.add_node("sanitize", node_sanitize)
    graph.add_node("execute", node_execute)
    graph.add_node("correct", node_correct)

    graph.set_entry_point("sanitize")

    graph.add_conditional_edges("sanitize", after_sanitize, {"end": END, "execute": "execute"})
    graph.add_conditional_edges("execute", after_execute, {"end": END, "correct": "correct"})
    graph.add_conditional_edges("correct", after_correct, {"end": END, "sanitize": "sanitize"})

    return graph


def run_execution_graph(state: LoopState, deps: LoopDeps) -> LoopState:
    """
    Run the graph and return the final loop state.

    This is the traced equivalent of run_execution_loop().
    """
    compiled = execution_graph

    # Three nodes per attempt, plus headroom
    limit = 3 * state.retry_budget + 5
    final_state = compiled.invoke({"loop": state, "deps": deps}, config={"recursion_limit": limit})
    return final_state["loop"]


# Pre-compiled graph for Studio discovery
execution_graph = build_execution_graph().compile()
